"""Logging configuration."""
import logging
import sys
from typing import Optional

from call_intelligence.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every request at INFO; our [TAG] lines already cover them.
QUIET_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine", "uvicorn.access")


def setup_logging(level: Optional[str] = None) -> None:
    """Send pipeline logs to stdout at LOG_LEVEL (or the given level)."""
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"[LOGGING] Configured - Level: {level_name}, Environment: {settings.environment}"
    )
