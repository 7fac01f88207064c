from __future__ import annotations

import logging
from logging.config import dictConfig

from scribe_api.core.config import settings

_configured = False


def configure_logging(level: str | None = None) -> None:
    """
    One root handler for both the API process and Celery workers.
    Idempotent: uvicorn reloads and worker forks may call it more than once.
    """
    global _configured
    if _configured:
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {
                "handlers": ["console"],
                "level": (level or settings.log_level).upper(),
            },
            "loggers": {
                # httpx logs every request at INFO; polling would drown the job logs
                "httpx": {"level": "WARNING"},
            },
        }
    )
    logging.getLogger(__name__).debug("logging configured")
    _configured = True
