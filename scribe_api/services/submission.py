from __future__ import annotations

import logging
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, BinaryIO, Union

from sqlalchemy.orm import Session

from scribe_api.core.config import settings
from scribe_api.services import ledger
from scribe_api.services.backends.base import local_path_from_uri
from scribe_api.services.budget import BudgetDecision, check_budget, estimate_hours
from scribe_api.services.drive import DriveClient, DriveError
from scribe_api.services.routing import choose_backend
from scribe_api.services.transfer import (
    SUPPORTED_EXTENSIONS,
    guess_mime_type,
    is_supported,
    spool_upload,
    use_chunked_transfer,
)
from scribe_api.worker.transcription_tasks import run_transcription_job

log = logging.getLogger(__name__)


class SubmissionRejected(Exception):
    pass


class BudgetExceeded(Exception):
    def __init__(self, decision: BudgetDecision):
        super().__init__(decision.reason or "Daily budget exceeded")
        self.decision = decision


class JobNotFound(Exception):
    pass


@dataclass
class LocalUpload:
    filename: str
    fileobj: BinaryIO
    size: int


@dataclass
class CloudFile:
    file_id: str


Source = Union[LocalUpload, CloudFile]


@dataclass
class SubmissionResult:
    job_id: str
    backend: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _validate_file(filename: str, size: int) -> None:
    if not filename:
        raise SubmissionRejected("No file provided")
    if not is_supported(filename):
        raise SubmissionRejected(
            f"Unsupported file type: {Path(filename).suffix or filename}. "
            f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    if size <= 0:
        raise SubmissionRejected("File is empty")
    if size > settings.max_file_size_bytes:
        gb = settings.max_file_size_bytes / (1024**3)
        raise SubmissionRejected(f"File too large: {size / (1024**2):.1f}MB. Maximum: {gb:g}GB")


def _check_budget(db: Session, owner: str, size: int) -> None:
    decision = check_budget(db, owner, estimate_hours(size))
    if not decision.allowed:
        log.info("budget rejected owner=%s: %s", owner, decision.reason)
        raise BudgetExceeded(decision)


def _dispatch(db: Session, job_id: str) -> None:
    try:
        run_transcription_job.delay(job_id)
    except Exception:
        log.exception("[%s] dispatch failed", job_id)
        ledger.fail(db, job_id, "Failed to dispatch transcription job")


def _result(db: Session, job_id: str) -> SubmissionResult:
    job = ledger.get_job(db, job_id)
    return SubmissionResult(job_id=job.job_id, backend=job.backend, status=job.status)


def submit(db: Session, source: Source, owner: str, project: str | None = None) -> SubmissionResult:
    """
    Validate, check budget, record the job and hand it to a worker.

    Nothing is written (no ledger row, no spool file) unless validation and
    the budget check both pass.
    """
    owner = (owner or "").strip()
    if not owner:
        raise SubmissionRejected("owner is required")
    project = (project or "").strip() or "general"

    if isinstance(source, LocalUpload):
        filename = Path(source.filename or "").name
        size = int(source.size or 0)
        mime_type = guess_mime_type(filename)
    elif isinstance(source, CloudFile):
        file_id = (source.file_id or "").strip()
        if not file_id:
            raise SubmissionRejected("file_id is required")
        try:
            meta = DriveClient(db, owner).get_metadata(file_id)
        except DriveError as e:
            raise SubmissionRejected(f"Could not read Drive file: {e}") from e
        filename, size = meta.name, meta.size
        mime_type = meta.mime_type or guess_mime_type(filename)
    else:
        raise SubmissionRejected("Unknown source")

    _validate_file(filename, size)
    _check_budget(db, owner, size)

    backend = choose_backend(size)
    job_id = ledger.new_job_id()

    if isinstance(source, LocalUpload):
        path = spool_upload(job_id, filename, source.fileobj)
        origin = "chunked-upload" if use_chunked_transfer(size) else "local-upload"
        source_ref = str(path)
    else:
        path = None
        origin = "cloud-file"
        source_ref = source.file_id.strip()

    try:
        ledger.create_job(
            db,
            job_id=job_id,
            owner=owner,
            project=project,
            source=origin,
            source_ref=source_ref,
            filename=filename,
            file_size_bytes=size,
            mime_type=mime_type,
            backend=backend,
        )
    except Exception:
        db.rollback()
        if path is not None:
            shutil.rmtree(path.parent, ignore_errors=True)
        raise

    log.info("[%s] submitted owner=%s size=%s backend=%s", job_id, owner, size, backend)
    _dispatch(db, job_id)
    return _result(db, job_id)


def retry(db: Session, job_id: str) -> SubmissionResult:
    """
    Start a fresh job for a failed one. Staged audio is reused when staging
    had finished; otherwise the original source is staged again.
    """
    old = ledger.find_job(db, job_id)
    if old is None:
        raise JobNotFound(job_id)
    if old.status != "error":
        raise SubmissionRejected(f"Only failed jobs can be retried (status: {old.status})")

    staged_ref = old.staged_ref
    staged_copy = local_path_from_uri(staged_ref)
    if staged_copy is not None and not staged_copy.exists():
        # a local staging copy is dropped once its backend result is stored
        staged_ref = None

    if not staged_ref and old.source != "cloud-file":
        if not old.source_ref or not Path(old.source_ref).exists():
            raise SubmissionRejected("The original audio is no longer available. Please upload it again.")

    size = int(old.file_size_bytes or 0)
    _check_budget(db, old.owner, size)

    new_id = ledger.new_job_id()
    ledger.create_job(
        db,
        job_id=new_id,
        owner=old.owner,
        project=old.project,
        source=old.source,
        source_ref=old.source_ref,
        filename=old.filename,
        file_size_bytes=size,
        mime_type=old.mime_type,
        backend=choose_backend(size),
        staged_ref=staged_ref,
        content_sha256=old.content_sha256,
        estimated_duration_seconds=old.estimated_duration_seconds,
        retry_of=old.job_id,
    )
    log.info("[%s] retry of %s (staged=%s)", new_id, old.job_id, bool(staged_ref))
    _dispatch(db, new_id)
    return _result(db, new_id)
