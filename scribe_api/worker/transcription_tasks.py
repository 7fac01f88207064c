from __future__ import annotations

from sqlalchemy.orm import Session

from scribe_api.db.session import SessionLocal
from scribe_api.services.orchestrator import run_job
from scribe_api.worker.celery_app import celery_app


@celery_app.task(name="transcription.run_job")
def run_transcription_job(job_id: str) -> dict:
    """Drive one transcription job to a terminal state. Never raises for job failures."""
    db: Session = SessionLocal()
    try:
        view = run_job(db, job_id)
        return {"ok": view.status == "completed", "job_id": job_id, "status": view.status, "error": view.error}
    finally:
        db.close()
