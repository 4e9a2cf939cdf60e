import logging
import sys
import os
import json
from datetime import datetime, timezone

from config.settings import INSTANCE_ID

# Attached by the task processor with logger.info(..., extra={...})
TASK_FIELDS = ("task_id", "task_type", "attempt")


class InstanceFilter(logging.Filter):
    """Stamp every record with the poller instance so multi-instance logs can be told apart"""

    def __init__(self, instance_id: str = INSTANCE_ID):
        super().__init__()
        self.instance_id = instance_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "instance_id"):
            record.instance_id = self.instance_id
        return True


def task_context(record: logging.LogRecord) -> dict:
    return {field: getattr(record, field) for field in TASK_FIELDS if hasattr(record, field)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shipping"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance_id": getattr(record, "instance_id", None),
            **task_context(record),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Text formatter for terminals; task context is appended as key=value pairs"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        if sys.stdout.isatty():
            color = self.COLORS.get(record.levelname, "")
            # Colour a copy so other handlers still see the plain level name
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        line = super().format(record)
        context = task_context(record)
        if context:
            line += " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"
        return line


def setup_logging(
    level: str = None,
    json_format: bool = None,
    log_file: str = None
):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting on the console (LOG_JSON=true)
        log_file: Optional file path; file output is always JSON
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    json_format = json_format if json_format is not None else os.getenv("LOG_JSON", "false").lower() == "true"
    log_file = log_file or os.getenv("LOG_FILE")

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    instance_filter = InstanceFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        JSONFormatter() if json_format else StandardFormatter(
            fmt="%(asctime)s - %(instance_id)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    console_handler.addFilter(instance_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(instance_filter)
        root_logger.addHandler(file_handler)

    # The poller logs every interval; keep library chatter out of it
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger
