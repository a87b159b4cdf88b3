# order_pipeline/core/logging_config.py
import logging
import socket
from logging.config import dictConfig

from order_pipeline.core.correlation import get_correlation_id

_LOGGING_CONFIGURED = False


class ContextFilter(logging.Filter):
    """Stamps every record with the hostname and the active request correlation id."""

    hostname = socket.gethostname()

    def filter(self, record: logging.LogRecord) -> bool:
        record.hostname = self.hostname
        if not hasattr(record, "correlation_id"):
            record.correlation_id = get_correlation_id()
        return True


def build_log_config(level: str = "INFO") -> dict:
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "order_pipeline.core.logging_config.ContextFilter"},
        },
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(hostname)s %(correlation_id)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                "rename_fields": {"asctime": "@timestamp", "levelname": "level", "name": "logger"},
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["context"],
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {
            "order_pipeline": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "": {  # Root logger
                "handlers": ["console"],
                "level": level,
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": "WARNING",
                "propagate": False,
            },
            "uvicorn.error": {
                "handlers": ["console"],
                "level": "INFO",
                "propagate": False,
            },
            "botocore": {"level": "WARNING"},
            "boto3": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
    }


def setup_logging(level: str = "INFO", force: bool = False):
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED and not force:
        return
    dictConfig(build_log_config(level))
    _LOGGING_CONFIGURED = True
    logging.getLogger(__name__).debug("Logging configured", extra={"log_level": level})
