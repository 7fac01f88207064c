from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path

from sqlalchemy.orm import Session

from scribe_api.core.config import settings
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services import ledger
from scribe_api.services.backends.base import local_path_from_uri

log = logging.getLogger(__name__)


def _spool_root() -> Path:
    return Path(settings.spool_dir).resolve()


def _inside_spool(p: Path | None) -> Path | None:
    if p is None:
        return None
    p = p.resolve()
    return p if _spool_root() in p.parents else None


def audio_dirs(job: TranscriptionJob) -> set[Path]:
    """Spool directories holding this job's audio: its own dir, its source and any local staging copy."""
    dirs = {_spool_root() / job.job_id}
    if job.source != "cloud-file" and job.source_ref:
        src = _inside_spool(Path(job.source_ref))
        if src is not None:
            dirs.add(src.parent)
    staged = _inside_spool(local_path_from_uri(job.staged_ref))
    if staged is not None:
        dirs.add(staged.parent)
    return dirs


def purge_expired(db: Session, older_than_days: int, now: datetime | None = None) -> int:
    """
    Retention: delete terminal jobs older than the cutoff together with their
    spooled audio. A directory still referenced by a surviving job (a retry
    reuses its predecessor's audio) is kept.
    """
    expired = ledger.expired_terminal_jobs(db, older_than_days, now)
    if not expired:
        return 0

    expired_ids = {j.job_id for j in expired}
    candidates: set[Path] = set()
    for job in expired:
        candidates |= audio_dirs(job)
    sources = [j.source_ref for j in expired if j.source != "cloud-file"]
    staged = [j.staged_ref for j in expired]

    deleted = ledger.purge_terminal_jobs(db, older_than_days, now)

    for survivor in ledger.jobs_referencing(db, sources, staged):
        if survivor.job_id not in expired_ids:
            candidates -= audio_dirs(survivor)

    removed = 0
    for d in sorted(candidates):
        if d.exists():
            shutil.rmtree(d, ignore_errors=True)
            removed += 1
    log.info("retention removed %s spool dirs for %s purged jobs", removed, deleted)
    return deleted
