# src/services/housekeeping_service/app/main.py
import logging
import asyncio
from prometheus_fastapi_instrumentator import Instrumentator

from replay_common.logging_utils import setup_logging
from .scheduler_manager import SchedulerManager
from .web import app as web_app

setup_logging("housekeeping_service")
logger = logging.getLogger(__name__)

async def main():
    """
    Initializes and runs the SchedulerManager for the Housekeeping Service.
    """
    logger.info("Housekeeping Service starting up...")

    Instrumentator().instrument(web_app).expose(web_app)
    logger.info("Prometheus metrics exposed at /metrics")

    manager = SchedulerManager()
    try:
        await manager.run()
    except Exception as e:
        logger.critical(f"Housekeeping Service encountered a critical error: {e}", exc_info=True)
    finally:
        logger.info("Housekeeping Service has shut down.")

if __name__ == "__main__":
    asyncio.run(main())
