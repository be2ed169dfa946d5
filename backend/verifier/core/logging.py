"""Structured JSON logging configuration."""
import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from verifier.core.config import settings


def setup_logging() -> None:
    """Configure JSON structured logging for production, human-readable for dev.

    The Celery worker calls this too, so sweep logs share the API format.
    """
    if settings.APP_ENV == "production":
        handler = logging.StreamHandler(sys.stdout)
        formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
        handler.setFormatter(formatter)
        logging.root.handlers = [handler]
        logging.root.setLevel(logging.INFO)
    else:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )
