# src/libs/replay-common/replay_common/config.py
import os
from dotenv import load_dotenv

# Load environment variables from a .env file for local development.
load_dotenv()


# Database Configurations
POSTGRES_USER = os.getenv("POSTGRES_USER", "user")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "password")
POSTGRES_DB = os.getenv("POSTGRES_DB", "event_audit")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "postgres")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
# Caps a single statement; housekeeping delete batches must finish inside it.
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "60000"))
SERVICE_NAME = os.getenv("SERVICE_NAME", "event-audit-service")

# Event catalog. Each key maps to a <key>_success / <key>_failure table pair,
# with '.' replaced by '_' (payments.in -> payments_in_success).
DEFAULT_EVENT_KEYS = (
    "payments.in,loans.in,cards.in,accounts.in,transfers.in,"
    "alerts.in,kyc.in,fraud.in,statements.in,limits.in"
)
EVENT_KEYS = [key.strip() for key in os.getenv("EVENT_KEYS", DEFAULT_EVENT_KEYS).split(",") if key.strip()]

# Downstream event app that re-emits replayed records
REPLAY_ENDPOINT_URL = os.getenv("REPLAY_ENDPOINT_URL", "http://event-app:8080")
REPLAY_ENDPOINT_TIMEOUT_SECONDS = float(os.getenv("REPLAY_ENDPOINT_TIMEOUT_SECONDS", "10"))
REPLAY_ENDPOINT_CONNECT_RETRIES = int(os.getenv("REPLAY_ENDPOINT_CONNECT_RETRIES", "3"))

# Replay job limits
REPLAY_MAX_IDS = int(os.getenv("REPLAY_MAX_IDS", "50"))
REPLAY_MAX_FILTER_RECORDS = int(os.getenv("REPLAY_MAX_FILTER_RECORDS", "10000"))
REPLAY_BATCH_SIZE = int(os.getenv("REPLAY_BATCH_SIZE", "50"))
REPLAY_ITEM_MAX_ATTEMPTS = int(os.getenv("REPLAY_ITEM_MAX_ATTEMPTS", "2"))

# Housekeeping retention policies (days)
RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "7"))
REPLAY_AUDIT_RETENTION_DAYS = int(os.getenv("REPLAY_AUDIT_RETENTION_DAYS", "30"))
HOUSEKEEPING_AUDIT_RETENTION_DAYS = int(os.getenv("HOUSEKEEPING_AUDIT_RETENTION_DAYS", "90"))

# Housekeeping execution
HOUSEKEEPING_DELETE_BATCH_SIZE = int(os.getenv("HOUSEKEEPING_DELETE_BATCH_SIZE", "1000"))
HOUSEKEEPING_TICK_INTERVAL_MINUTES = int(os.getenv("HOUSEKEEPING_TICK_INTERVAL_MINUTES", "60"))
HOUSEKEEPING_STALE_RUN_MINUTES = int(os.getenv("HOUSEKEEPING_STALE_RUN_MINUTES", "120"))
