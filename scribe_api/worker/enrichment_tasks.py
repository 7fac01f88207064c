from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from scribe_api.db.session import SessionLocal
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services import knowledge, ledger, notifier
from scribe_api.worker.celery_app import celery_app

log = logging.getLogger(__name__)


def _db() -> Session:
    return SessionLocal()


def _completed_job(db: Session, job_id: str) -> TranscriptionJob | None:
    job = ledger.find_job(db, job_id)
    if job is None or job.status != "completed":
        log.warning("[%s] enrichment skipped; job is not completed", job_id)
        return None
    return job


# Each task reports failure in its return value and never re-raises:
# enrichment must not affect the job row.


@celery_app.task(name="enrich.store_knowledge")
def store_knowledge(job_id: str) -> dict:
    db = _db()
    try:
        job = _completed_job(db, job_id)
        if job is None:
            return {"ok": False, "job_id": job_id, "error": "job not completed"}
        doc = knowledge.store_knowledge_document(db, job)
        log.info("[%s] stored knowledge document %s", job_id, doc.id)
        return {"ok": True, "job_id": job_id, "document_id": doc.id}
    except Exception as e:
        db.rollback()
        log.exception("[%s] knowledge storage failed", job_id)
        return {"ok": False, "job_id": job_id, "error": str(e)}
    finally:
        db.close()


@celery_app.task(name="enrich.index_passages")
def index_passages(job_id: str) -> dict:
    db = _db()
    try:
        job = _completed_job(db, job_id)
        if job is None:
            return {"ok": False, "job_id": job_id, "error": "job not completed"}
        n = knowledge.index_passages(db, job)
        return {"ok": True, "job_id": job_id, "passages": n}
    except Exception as e:
        db.rollback()
        log.exception("[%s] passage indexing failed", job_id)
        return {"ok": False, "job_id": job_id, "error": str(e)}
    finally:
        db.close()


@celery_app.task(name="enrich.notify")
def notify(job_id: str) -> dict:
    db = _db()
    try:
        job = _completed_job(db, job_id)
        if job is None:
            return {"ok": False, "job_id": job_id, "error": "job not completed"}
        out = notifier.notify_completion(job)
        return {"ok": True, "job_id": job_id, **out}
    except Exception as e:
        log.exception("[%s] completion notification failed", job_id)
        return {"ok": False, "job_id": job_id, "error": str(e)}
    finally:
        db.close()
