import logging
import os
from logging.config import dictConfig
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process logging for the store service, scripts and the tracker.

    ``STUDYTRACK_LOG_LEVEL`` sets the root level, ``STUDYTRACK_SYNC_LOG_LEVEL``
    overrides the synchronizer loggers, and ``STUDYTRACK_TELEMETRY_LOG`` routes
    telemetry lines to a separate file.
    """
    root_level = (level or os.getenv("STUDYTRACK_LOG_LEVEL", "INFO")).upper()
    sync_level = os.getenv("STUDYTRACK_SYNC_LOG_LEVEL", root_level).upper()
    telemetry_path = os.getenv("STUDYTRACK_TELEMETRY_LOG")

    handlers: dict[str, dict[str, object]] = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    }
    telemetry_logger: dict[str, object] = {"level": root_level}
    if telemetry_path:
        handlers["telemetry"] = {
            "class": "logging.FileHandler",
            "formatter": "telemetry",
            "filename": telemetry_path,
            "encoding": "utf-8",
        }
        telemetry_logger = {"level": "INFO", "handlers": ["telemetry"], "propagate": False}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": DEFAULT_LOG_FORMAT},
                "telemetry": {"format": TELEMETRY_LOG_FORMAT},
            },
            "handlers": handlers,
            "loggers": {
                "studytrack.sync": {"level": sync_level},
                "studytrack.debounce": {"level": sync_level},
                "studytrack.telemetry": telemetry_logger,
            },
            "root": {
                "handlers": ["default"],
                "level": root_level,
            },
        }
    )

    if os.getenv("STUDYTRACK_DEBUG_HTTP", "0") == "1":
        logging.getLogger("httpx").setLevel(logging.DEBUG)
    else:
        logging.getLogger("httpx").setLevel(logging.WARNING)
