import os

from celery import Celery
from celery.signals import setup_logging

from scribe_api.core.celery_settings import eager_overrides
from scribe_api.core.config import settings  # noqa: F401  (loads .env for the worker too)
from scribe_api.core.logging import configure_logging


def _env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v and v.strip() else default


BROKER_URL = (
    _env("CELERY_BROKER_URL")
    or _env("REDIS_URL")
    or "redis://localhost:6379/0"
)

RESULT_BACKEND = _env("CELERY_RESULT_BACKEND") or BROKER_URL

celery_app = Celery(
    "scribe_api",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
)

# Task modules are registered through scribe_api.worker.tasks
celery_app.autodiscover_tasks(["scribe_api.worker"])

celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    enable_utc=True,
    timezone="UTC",
    # jobs poll for hours; don't hand a worker more than it is running
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)
celery_app.conf.update(**eager_overrides())


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()


__all__ = ["celery_app"]
