from __future__ import annotations

from scribe_api.core.config import settings
from scribe_api.db.session import SessionLocal
from scribe_api.services import retention
from scribe_api.worker.celery_app import celery_app


@celery_app.task(name="maintenance.purge_terminal_jobs")
def purge_terminal_jobs(older_than_days: int | None = None) -> dict:
    days = settings.retention_days if older_than_days is None else int(older_than_days)
    db = SessionLocal()
    try:
        deleted = retention.purge_expired(db, days)
        return {"ok": True, "deleted": deleted, "older_than_days": days}
    finally:
        db.close()
