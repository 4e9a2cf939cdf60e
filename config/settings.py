import os
import socket
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ------------- Database -------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_tasks.db")

# ------------- Scheduler -------------
TASK_SCHEDULER_ENABLED = _env_bool("TASK_SCHEDULER_ENABLED", True)
POLLING_INTERVAL_SECONDS = _env_int("TASK_POLLING_INTERVAL_SECONDS", 30)
BATCH_SIZE = _env_int("TASK_BATCH_SIZE", 50)
DEFAULT_MAX_RETRIES = _env_int("TASK_DEFAULT_MAX_RETRIES", 3)

# Backoff applied to scheduled_for on retry: base * 2**(attempt-1), capped.
# A base of 0 makes a failed task eligible again on the next poll.
RETRY_BACKOFF_SECONDS = _env_int("TASK_RETRY_BACKOFF_SECONDS", 60)
RETRY_BACKOFF_MAX_SECONDS = _env_int("TASK_RETRY_BACKOFF_MAX_SECONDS", 3600)

HANDLER_TIMEOUT_SECONDS = _env_int("TASK_HANDLER_TIMEOUT_SECONDS", 30)
STALE_PROCESSING_TIMEOUT_MINUTES = _env_int("TASK_STALE_PROCESSING_MINUTES", 5)

INSTANCE_ID = os.getenv("INSTANCE_ID", os.getenv("HOSTNAME", socket.gethostname()))

# ------------- Clinic -------------
# Used to render appointment dates in notification messages
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "Europe/Paris")

# ------------- Cache -------------
CACHE_TTL_SECONDS = _env_int("CACHE_TTL_SECONDS", 300)
