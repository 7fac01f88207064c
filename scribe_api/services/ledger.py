from __future__ import annotations

import json
import logging
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from scribe_api.models.audio_chunk import AudioChunk
from scribe_api.models.transcription_job import (
    STATUS_ORDER,
    TERMINAL_STATUSES,
    TranscriptionJob,
    utcnow,
)

log = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = tuple(s for s in STATUS_ORDER if s not in TERMINAL_STATUSES)

_JOB_ID_RE = re.compile(r"^tx_(\d{10,})_[a-z0-9]+$")
_ALPHABET = string.ascii_lowercase + string.digits


class InvalidTransition(Exception):
    pass


# -----------------------------
# Job ids
# -----------------------------


def new_job_id(now: datetime | None = None) -> str:
    """
    tx_<epoch_ms>_<9 random chars>. The timestamp is read back by status
    resolution to tell "not written yet" from "never created".
    """
    ts = now or utcnow()
    ms = int(ts.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"tx_{ms}_{suffix}"


def job_id_timestamp(job_id: str) -> datetime | None:
    m = _JOB_ID_RE.match(job_id or "")
    if not m:
        return None
    return datetime.fromtimestamp(int(m.group(1)) / 1000.0, tz=timezone.utc)


# -----------------------------
# Helpers
# -----------------------------


def status_rank(status: str) -> int:
    if status == "error":
        return len(STATUS_ORDER)
    try:
        return STATUS_ORDER.index(status)
    except ValueError:
        raise ValueError(f"Unknown status: {status}") from None


def _clamp_progress(p: float | int) -> int:
    return int(max(0, min(100, round(float(p)))))


def _check_transition(current: str, target: str) -> None:
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"job is terminal ({current}); cannot move to {target}")
    if target == "error":
        return
    if status_rank(target) < status_rank(current):
        raise InvalidTransition(f"cannot move backwards from {current} to {target}")


def _dumps(v: Any) -> str:
    return json.dumps(v if v is not None else [], ensure_ascii=False)


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# -----------------------------
# Create / read
# -----------------------------


def create_job(
    db: Session,
    *,
    job_id: str,
    owner: str,
    source: str,
    filename: str,
    file_size_bytes: int,
    backend: str,
    project: str = "general",
    source_ref: str | None = None,
    mime_type: str | None = None,
    staged_ref: str | None = None,
    content_sha256: str | None = None,
    estimated_duration_seconds: float | None = None,
    retry_of: str | None = None,
) -> TranscriptionJob:
    job = TranscriptionJob(
        job_id=job_id,
        owner=owner,
        project=project or "general",
        source=source,
        source_ref=source_ref,
        filename=filename,
        file_size_bytes=int(file_size_bytes),
        mime_type=mime_type,
        backend=backend,
        staged_ref=staged_ref,
        content_sha256=content_sha256,
        estimated_duration_seconds=estimated_duration_seconds,
        retry_of=retry_of,
        status="starting",
        progress=0,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    log.info("[%s] ledger row created owner=%s backend=%s source=%s", job_id, owner, backend, source)
    return job


def find_job(db: Session, job_id: str) -> TranscriptionJob | None:
    return db.query(TranscriptionJob).filter(TranscriptionJob.job_id == job_id).first()


def get_job(db: Session, job_id: str) -> TranscriptionJob:
    return db.query(TranscriptionJob).filter(TranscriptionJob.job_id == job_id).one()


def list_jobs(db: Session, owner: str, limit: int = 20) -> list[TranscriptionJob]:
    return (
        db.query(TranscriptionJob)
        .filter(TranscriptionJob.owner == owner)
        .order_by(TranscriptionJob.created_at.desc(), TranscriptionJob.id.desc())
        .limit(limit)
        .all()
    )


def resolve_record_id(db: Session, job_id: str) -> int | None:
    return db.execute(select(TranscriptionJob.id).where(TranscriptionJob.job_id == job_id)).scalar_one_or_none()


def daily_usage_seconds(db: Session, owner: str, since: datetime) -> float:
    total = db.execute(
        select(func.coalesce(func.sum(TranscriptionJob.audio_duration_seconds), 0.0)).where(
            TranscriptionJob.owner == owner,
            TranscriptionJob.created_at >= since,
        )
    ).scalar_one()
    return float(total or 0.0)


# -----------------------------
# Transitions
# -----------------------------


def advance(db: Session, job_id: str, status: str, progress: float | None = None) -> TranscriptionJob:
    """
    Move a job forward. Backward moves and moves out of a terminal state raise
    InvalidTransition; progress never decreases while non-terminal.
    """
    job = get_job(db, job_id)
    _check_transition(job.status, status)

    job.status = status
    if status == "completed":
        job.progress = 100
        job.completed_at = utcnow()
    elif status == "error":
        job.progress = 0
    elif progress is not None:
        job.progress = max(int(job.progress or 0), _clamp_progress(progress))

    db.commit()
    db.refresh(job)
    return job


def claim(
    db: Session,
    job_id: str,
    from_statuses: Iterable[str],
    to_status: str,
    progress: float | None = None,
) -> bool:
    """
    Atomic compare-and-set on status. Returns True only for the caller whose
    UPDATE actually matched; everyone else lost the race.
    """
    allowed = [s for s in from_statuses if s not in TERMINAL_STATUSES]
    if not allowed:
        return False
    for s in allowed:
        _check_transition(s, to_status)

    values: dict[str, Any] = {"status": to_status, "updated_at": utcnow()}
    q = db.query(TranscriptionJob).filter(
        TranscriptionJob.job_id == job_id,
        TranscriptionJob.status.in_(allowed),
    )
    if progress is not None:
        p = _clamp_progress(progress)
        values["progress"] = p
        q = q.filter(TranscriptionJob.progress <= p)

    matched = q.update(values, synchronize_session=False)
    db.commit()
    return matched == 1


def reclaim_stale(db: Session, job_id: str, statuses: Iterable[str], stale_before: datetime) -> bool:
    """
    Take over a job whose driver went quiet: CAS on (status, updated_at) that
    only touches updated_at. The winner resumes finalizing.
    """
    matched = (
        db.query(TranscriptionJob)
        .filter(
            TranscriptionJob.job_id == job_id,
            TranscriptionJob.status.in_(list(statuses)),
            TranscriptionJob.updated_at < stale_before,
        )
        .update({"updated_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    return matched == 1


def set_backend_job_id(db: Session, job_id: str, backend_job_id: str, progress: float | None = None) -> TranscriptionJob:
    """
    Write-once. The row moves to "submitted" in the same commit, so any other
    process can resume polling from the ledger alone.
    """
    job = get_job(db, job_id)
    if job.backend_job_id:
        if job.backend_job_id != backend_job_id:
            raise InvalidTransition(
                f"backend_job_id already set to {job.backend_job_id}; refusing {backend_job_id}"
            )
        return job

    _check_transition(job.status, "submitted")
    job.backend_job_id = backend_job_id
    job.status = "submitted"
    job.submitted_at = utcnow()
    if progress is not None:
        job.progress = max(int(job.progress or 0), _clamp_progress(progress))
    db.commit()
    db.refresh(job)
    log.info("[%s] submitted backend=%s backend_job_id=%s", job_id, job.backend, backend_job_id)
    return job


def record_staging(
    db: Session,
    job_id: str,
    *,
    staged_ref: str,
    content_sha256: str | None,
    mime_type: str | None,
    estimated_duration_seconds: float | None,
    file_size_bytes: int | None = None,
    filename: str | None = None,
) -> TranscriptionJob:
    job = get_job(db, job_id)
    if job.is_terminal:
        raise InvalidTransition(f"job is terminal ({job.status}); cannot record staging")
    job.staged_ref = staged_ref
    job.content_sha256 = content_sha256 or job.content_sha256
    job.mime_type = mime_type or job.mime_type
    job.estimated_duration_seconds = estimated_duration_seconds
    if file_size_bytes is not None:
        job.file_size_bytes = int(file_size_bytes)
    if filename:
        job.filename = filename
    db.commit()
    db.refresh(job)
    return job


def complete(
    db: Session,
    job_id: str,
    *,
    text: str,
    segments: list[dict[str, Any]] | None,
    duration_seconds: float | None,
    analysis: dict[str, Any] | None = None,
) -> bool:
    """
    Single update from "saving" to "completed" carrying the transcript and the
    analysis fields. analysis=None leaves the analysis columns empty.
    """
    a = analysis or {}
    now = utcnow()
    values: dict[str, Any] = {
        "status": "completed",
        "progress": 100,
        "text": text or "",
        "speaker_segments_json": _dumps(segments or []),
        "audio_duration_seconds": duration_seconds,
        "error_message": None,
        "completed_at": now,
        "updated_at": now,
    }
    if analysis is not None:
        values.update(
            {
                "tags_json": _dumps(a.get("tags") or []),
                "action_items_json": _dumps(a.get("action_items") or []),
                "topics_json": _dumps(a.get("topics") or []),
                "sentiment": a.get("sentiment"),
                "category": a.get("category"),
                "importance_score": a.get("importance_score"),
            }
        )

    matched = (
        db.query(TranscriptionJob)
        .filter(TranscriptionJob.job_id == job_id, TranscriptionJob.status == "saving")
        .update(values, synchronize_session=False)
    )
    db.commit()
    return matched == 1


def fail(db: Session, job_id: str, message: str, from_statuses: Iterable[str] | None = None) -> bool:
    """
    Move a job to "error". A job that is already terminal is left untouched
    (terminal states are absorbing). from_statuses narrows which states the
    caller may fail from, so a driver cannot fail a job someone else is
    finalizing.
    """
    msg = (message or "").strip() or "Transcription failed"
    allowed = [s for s in (from_statuses or NON_TERMINAL_STATUSES) if s not in TERMINAL_STATUSES]
    if not allowed:
        return False
    matched = (
        db.query(TranscriptionJob)
        .filter(
            TranscriptionJob.job_id == job_id,
            TranscriptionJob.status.in_(allowed),
        )
        .update(
            {"status": "error", "progress": 0, "error_message": msg, "updated_at": utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    if matched:
        log.warning("[%s] job failed: %s", job_id, msg)
    return matched == 1


# -----------------------------
# Chunks
# -----------------------------


def record_chunk(
    db: Session,
    *,
    job_id: str,
    chunk_index: int,
    size_bytes: int,
    storage_key: str,
    etag: str | None = None,
    sha256: str | None = None,
) -> AudioChunk:
    """
    Idempotent per (job_id, chunk_index): re-recording a chunk overwrites it.
    """
    row = (
        db.query(AudioChunk)
        .filter(AudioChunk.job_id == job_id, AudioChunk.chunk_index == chunk_index)
        .first()
    )
    if row is None:
        row = AudioChunk(job_id=job_id, chunk_index=chunk_index)
        db.add(row)
    row.size_bytes = int(size_bytes)
    row.storage_key = storage_key
    row.etag = etag
    row.sha256 = sha256
    row.uploaded_at = utcnow()
    db.commit()
    db.refresh(row)
    return row


def list_chunks(db: Session, job_id: str) -> list[AudioChunk]:
    return (
        db.query(AudioChunk)
        .filter(AudioChunk.job_id == job_id)
        .order_by(AudioChunk.chunk_index.asc())
        .all()
    )


def count_chunks(db: Session, job_id: str) -> int:
    return int(
        db.execute(select(func.count(AudioChunk.id)).where(AudioChunk.job_id == job_id)).scalar_one() or 0
    )


def is_fully_staged(db: Session, job_id: str, expected_chunks: int) -> bool:
    return expected_chunks > 0 and count_chunks(db, job_id) == expected_chunks


# -----------------------------
# Retention
# -----------------------------


def _retention_cutoff(older_than_days: int, now: datetime | None) -> datetime:
    if older_than_days < 0:
        raise ValueError("older_than_days must be >= 0")
    return (now or utcnow()) - timedelta(days=older_than_days)


def expired_terminal_jobs(db: Session, older_than_days: int, now: datetime | None = None) -> list[TranscriptionJob]:
    cutoff = _retention_cutoff(older_than_days, now)
    return (
        db.query(TranscriptionJob)
        .filter(
            TranscriptionJob.status.in_(tuple(TERMINAL_STATUSES)),
            TranscriptionJob.created_at < cutoff,
        )
        .all()
    )


def jobs_referencing(db: Session, source_refs: Iterable[str], staged_refs: Iterable[str]) -> list[TranscriptionJob]:
    """Jobs whose source or staged audio is one of the given references."""
    src, stg = [r for r in source_refs if r], [r for r in staged_refs if r]
    if not src and not stg:
        return []
    return (
        db.query(TranscriptionJob)
        .filter(or_(TranscriptionJob.source_ref.in_(src), TranscriptionJob.staged_ref.in_(stg)))
        .all()
    )


def purge_terminal_jobs(db: Session, older_than_days: int, now: datetime | None = None) -> int:
    """
    Deletes completed/error rows (and their chunk rows) created before the
    cutoff; in-flight jobs are never touched. Spooled audio is the caller's
    concern (see services.retention).
    """
    ids = [j.job_id for j in expired_terminal_jobs(db, older_than_days, now)]
    if not ids:
        return 0

    db.query(AudioChunk).filter(AudioChunk.job_id.in_(ids)).delete(synchronize_session=False)
    deleted = (
        db.query(TranscriptionJob)
        .filter(TranscriptionJob.job_id.in_(ids))
        .delete(synchronize_session=False)
    )
    db.commit()
    log.info("retention purge removed %s terminal jobs older than %s days", deleted, older_than_days)
    return int(deleted)
