from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scribe_api.core.config import settings
from scribe_api.models.transcription_job import TranscriptionJob, utcnow
from scribe_api.services import analysis, backends, enrichment, ledger, transfer
from scribe_api.services.backends import POLL_COMPLETED, POLL_ERROR, BackendError, PollResult
from scribe_api.services.budget import estimate_hours
from scribe_api.services.ledger import InvalidTransition, as_utc, status_rank

log = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Transcription job not found. It may have failed to start. Please try uploading again."

POLLABLE = ("submitted", "processing")
FINALIZING = ("analyzing", "saving")
# States the driving task owns. Once a job is finalizing, only the claimant may fail it.
DRIVER_OWNED = ("starting", "uploading") + POLLABLE


@dataclass
class JobStatusView:
    job_id: str
    status: str
    progress: int
    eta_seconds: int
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# -----------------------------
# Progress
# -----------------------------


def eta_seconds(status: str, progress: int) -> int:
    if status in ("completed", "error"):
        return 0
    return max(0, (100 - int(progress)) * settings.eta_seconds_per_percent)


def expected_processing_seconds(job: TranscriptionJob) -> float:
    audio_s = job.estimated_duration_seconds or estimate_hours(job.file_size_bytes or 0) * 3600.0
    return max(1.0, float(audio_s) * settings.processing_seconds_per_audio_second)


def estimate_processing_progress(job: TranscriptionJob, now: datetime | None = None) -> int:
    """
    Linear interpolation between the processing floor and ceiling, by time
    since submission against the expected processing time.
    """
    lo, hi = settings.processing_progress_floor, settings.processing_progress_ceiling
    start = as_utc(job.submitted_at) or as_utc(job.created_at)
    if start is None:
        return lo
    elapsed = max(0.0, ((now or utcnow()) - start).total_seconds())
    frac = min(1.0, elapsed / expected_processing_seconds(job))
    return int(lo + (hi - lo) * frac)


# -----------------------------
# Views
# -----------------------------


def result_payload(job: TranscriptionJob) -> dict[str, Any]:
    return {
        "record_id": job.id,
        "filename": job.filename,
        "backend": job.backend,
        "text": job.text or "",
        "speaker_segments": job.speaker_segments,
        "audio_duration_seconds": job.audio_duration_seconds,
        "tags": job.tags,
        "action_items": job.action_items,
        "topics": job.topics,
        "sentiment": job.sentiment,
        "category": job.category,
        "importance_score": job.importance_score,
    }


def view_from_job(job: TranscriptionJob) -> JobStatusView:
    if job.status == "completed":
        progress = 100
    elif job.status == "error":
        progress = 0
    else:
        progress = int(job.progress or 0)
    return JobStatusView(
        job_id=job.job_id,
        status=job.status,
        progress=progress,
        eta_seconds=eta_seconds(job.status, progress),
        result=result_payload(job) if job.status == "completed" else None,
        error=job.error_message if job.status == "error" else None,
    )


def missing_view(job_id: str, now: datetime | None = None) -> JobStatusView:
    """
    No ledger row. A young id is probably still being written by another
    instance, so the answer is optimistic; an old or unparseable one is not.
    """
    ts = ledger.job_id_timestamp(job_id)
    if ts is not None:
        age = ((now or utcnow()) - ts).total_seconds()
        if age <= settings.missing_job_grace_seconds:
            return JobStatusView(job_id=job_id, status="starting", progress=0, eta_seconds=eta_seconds("starting", 0))
    return JobStatusView(job_id=job_id, status="error", progress=0, eta_seconds=0, error=NOT_FOUND_MESSAGE)


# -----------------------------
# Finalize
# -----------------------------


def _save(db: Session, job_id: str, result: PollResult, analysis_fields: dict[str, Any] | None) -> bool:
    try:
        return ledger.complete(
            db,
            job_id,
            text=result.text or "",
            segments=result.segments,
            duration_seconds=result.duration_seconds,
            analysis=analysis_fields,
        )
    except SQLAlchemyError:
        db.rollback()
        record_id = ledger.resolve_record_id(db, job_id)
        log.exception("[%s] full save failed (record %s); retrying with essential fields", job_id, record_id)

    try:
        return ledger.complete(
            db,
            job_id,
            text=result.text or "",
            segments=None,
            duration_seconds=result.duration_seconds,
            analysis=None,
        )
    except SQLAlchemyError as e:
        db.rollback()
        ledger.fail(db, job_id, f"Failed to save transcript: {e}", from_statuses=("saving",))
        return False


def _finish(db: Session, job_id: str, result: PollResult) -> bool:
    job = ledger.get_job(db, job_id)

    analysis_fields: dict[str, Any] | None = None
    try:
        a = analysis.analyze(
            result.text or "",
            result.segments,
            {"filename": job.filename, "owner": job.owner, "project": job.project},
        )
        analysis_fields = a.to_dict()
    except Exception:
        log.exception("[%s] analysis failed; saving transcript without it", job_id)

    if not ledger.claim(db, job_id, FINALIZING, "saving", progress=95):
        return False

    if not _save(db, job_id, result, analysis_fields):
        return False

    log.info("[%s] completed (%s chars)", job_id, len(result.text or ""))
    enrichment.fan_out(job_id)
    return True


def finalize(db: Session, job_id: str, result: PollResult) -> bool:
    """
    Claim {submitted, processing} -> analyzing, then analyze, save and fan out.
    Returns False when someone else already claimed the job.
    """
    if not ledger.claim(db, job_id, POLLABLE, "analyzing", progress=92):
        log.info("[%s] finalize skipped; already claimed", job_id)
        return False
    return _finish(db, job_id, result)


# -----------------------------
# Driving a job
# -----------------------------


def _driver_fail(db: Session, job_id: str, message: str) -> None:
    if not ledger.fail(db, job_id, message, from_statuses=DRIVER_OWNED):
        log.info("[%s] driver error ignored; job is finalizing or finished elsewhere: %s", job_id, message)


def _record_progress(db: Session, job_id: str, now: datetime | None = None) -> None:
    job = ledger.get_job(db, job_id)
    if job.status not in POLLABLE:
        return
    p = max(int(job.progress or 0), estimate_processing_progress(job, now))
    ledger.claim(db, job_id, POLLABLE, "processing", progress=p)


def _poll_until_done(
    db: Session,
    job_id: str,
    backend: backends.TranscriptionBackend,
    backend_job_id: str,
    poll_interval: float,
    max_polls: int,
) -> None:
    for _ in range(max_polls):
        if poll_interval > 0:
            time.sleep(poll_interval)

        result = backend.poll(backend_job_id)
        if result.status == POLL_COMPLETED:
            finalize(db, job_id, result)
            return
        if result.status == POLL_ERROR:
            ledger.fail(db, job_id, result.error or "Transcription failed", from_statuses=POLLABLE)
            return

        job = ledger.get_job(db, job_id)
        if job.is_terminal or job.status in FINALIZING:
            # a status request got there first
            return
        _record_progress(db, job_id)

    _driver_fail(db, job_id, f"Transcription timed out after {max_polls} status checks")


def run_job(
    db: Session,
    job_id: str,
    *,
    poll_interval: float | None = None,
    max_polls: int | None = None,
) -> JobStatusView:
    """
    Drive one job from its current state to a terminal state.

    Safe to call again for the same job: terminal jobs and jobs already past
    "submitted" under another driver are returned as they stand.
    """
    job = ledger.find_job(db, job_id)
    if job is None:
        log.warning("[%s] run_job: no ledger row", job_id)
        return missing_view(job_id)
    if job.is_terminal:
        return view_from_job(job)
    if job.backend_job_id and status_rank(job.status) > status_rank("submitted"):
        log.info("[%s] run_job: already %s elsewhere", job_id, job.status)
        return view_from_job(job)

    interval = settings.poll_interval_seconds if poll_interval is None else float(poll_interval)
    polls = settings.max_polls if max_polls is None else int(max_polls)

    try:
        backend = backends.get_backend(job.backend)

        backend_job_id = job.backend_job_id
        if not backend_job_id:
            if not job.staged_ref:
                ledger.advance(db, job_id, "uploading", 5)
                staged = transfer.stage(db, ledger.get_job(db, job_id), backend)
                ledger.record_staging(
                    db,
                    job_id,
                    staged_ref=staged.reference,
                    content_sha256=staged.sha256,
                    mime_type=staged.mime_type,
                    estimated_duration_seconds=staged.estimated_duration_seconds,
                    file_size_bytes=staged.file_size,
                )
                log.info("[%s] staged %s bytes (%s chunks)", job_id, staged.file_size, staged.chunks)

            job = ledger.get_job(db, job_id)
            backend_job_id = backend.submit(job.staged_ref, {})
            ledger.set_backend_job_id(db, job_id, backend_job_id, progress=settings.processing_progress_floor)

        _poll_until_done(db, job_id, backend, backend_job_id, interval, polls)

    except transfer.TransferError as e:
        db.rollback()
        _driver_fail(db, job_id, f"Transfer failed: {e}")
    except BackendError as e:
        db.rollback()
        _driver_fail(db, job_id, str(e))
    except InvalidTransition as e:
        # another instance moved the job on (e.g. finalized it from a status request)
        db.rollback()
        log.info("[%s] run_job stopped: %s", job_id, e)
    except Exception as e:
        db.rollback()
        log.exception("[%s] run_job crashed", job_id)
        _driver_fail(db, job_id, str(e) or e.__class__.__name__)

    return view_from_job(ledger.get_job(db, job_id))


# -----------------------------
# Status resolution
# -----------------------------


def _poll_once(job: TranscriptionJob) -> PollResult | None:
    try:
        return backends.get_backend(job.backend).poll(job.backend_job_id)
    except Exception as e:
        log.warning("[%s] status poll failed: %s", job.job_id, e)
        return None


def _resume_stale(db: Session, job: TranscriptionJob, now: datetime) -> None:
    cutoff = now - timedelta(seconds=settings.stale_finalize_seconds)
    updated = as_utc(job.updated_at)
    if updated is None or updated >= cutoff:
        return
    if not ledger.reclaim_stale(db, job.job_id, FINALIZING, cutoff):
        return

    log.warning("[%s] resuming finalize after driver went quiet in %s", job.job_id, job.status)
    result = _poll_once(ledger.get_job(db, job.job_id))
    if result is None:
        return
    if result.status == POLL_COMPLETED:
        _finish(db, job.job_id, result)
    elif result.status == POLL_ERROR:
        ledger.fail(db, job.job_id, result.error or "Transcription failed", from_statuses=FINALIZING)


def get_status(db: Session, job_id: str, now: datetime | None = None) -> JobStatusView:
    """
    Resolve a job's status from the ledger, with at most one live backend poll.
    Works for jobs driven by any instance.
    """
    now = now or utcnow()
    job = ledger.find_job(db, job_id)
    if job is None:
        return missing_view(job_id, now)
    if job.is_terminal:
        return view_from_job(job)

    if job.backend_job_id and job.status in POLLABLE:
        result = _poll_once(job)
        if result is None:
            return view_from_job(ledger.get_job(db, job_id))
        if result.status == POLL_COMPLETED:
            finalize(db, job_id, result)
        elif result.status == POLL_ERROR:
            ledger.fail(db, job_id, result.error or "Transcription failed", from_statuses=POLLABLE)
        else:
            _record_progress(db, job_id, now)
    elif job.backend_job_id and job.status in FINALIZING:
        _resume_stale(db, job, now)

    return view_from_job(ledger.get_job(db, job_id))
