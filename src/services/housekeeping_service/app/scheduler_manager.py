# src/services/housekeeping_service/app/scheduler_manager.py
import logging
import signal
import asyncio
import uvicorn

from .web import app as web_app
from .scheduler.housekeeping_scheduler import HousekeepingScheduler

logger = logging.getLogger(__name__)

class SchedulerManager:
    """
    Manages the lifecycle of the housekeeping scheduler and the health probe
    web server for the Housekeeping Service.
    """
    def __init__(self, scheduler: HousekeepingScheduler = None):
        self.tasks = []
        self._shutdown_event = asyncio.Event()
        self.scheduler = scheduler or HousekeepingScheduler()

        logger.info("SchedulerManager initialized with 1 housekeeping scheduler.")

    def _signal_handler(self, signum, frame):
        logger.info(f"Received shutdown signal: {signal.Signals(signum).name}. Initiating graceful shutdown...")
        self._shutdown_event.set()

    async def run(self):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        uvicorn_config = uvicorn.Config(web_app, host="0.0.0.0", port=8087, log_config=None)
        server = uvicorn.Server(uvicorn_config)

        logger.info("Starting housekeeping scheduler and the web server...")
        self.tasks.append(asyncio.create_task(self.scheduler.run()))
        self.tasks.append(asyncio.create_task(server.serve()))

        logger.info("SchedulerManager is running. Press Ctrl+C to exit.")
        await self._shutdown_event.wait()

        logger.info("Shutdown event received. Stopping all tasks...")
        self.scheduler.stop()
        server.should_exit = True

        await asyncio.gather(*self.tasks, return_exceptions=True)
        logger.info("All tasks have been successfully shut down.")
