from __future__ import annotations

import hashlib
import logging
import math
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from sqlalchemy.orm import Session

from scribe_api.core.config import MB, settings
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services import ledger
from scribe_api.services.backends.base import BackendError, TranscriptionBackend
from scribe_api.services.drive import DriveClient, DriveError, DriveAuthError
from scribe_api.services.storage import StorageError, get_storage

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("m4a", "mp3", "wav", "flac", "webm", "ogg", "aac", "mp4", "mpeg", "mpga")

MIME_TYPES = {
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "aac": "audio/aac",
    "mp4": "audio/mp4",
    "mpeg": "audio/mpeg",
    "mpga": "audio/mpeg",
}

# Typical seconds of speech per MB for each container/codec.
SECONDS_PER_MB = {
    "mp3": 60,
    "m4a": 45,
    "wav": 10,
    "aac": 50,
    "ogg": 55,
}
DEFAULT_SECONDS_PER_MB = 45

_HASH_BLOCK = 1 * MB


class TransferError(Exception):
    pass


@dataclass
class StagedAudio:
    reference: str
    file_size: int
    filename: str
    sha256: str
    mime_type: str
    estimated_duration_seconds: float
    chunks: int = 0


# -----------------------------
# Metadata helpers
# -----------------------------


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


def is_supported(filename: str) -> bool:
    return file_extension(filename) in SUPPORTED_EXTENSIONS


def guess_mime_type(filename: str) -> str:
    return MIME_TYPES.get(file_extension(filename), "application/octet-stream")


def estimate_duration_seconds(file_size_bytes: int, filename: str) -> float:
    per_mb = SECONDS_PER_MB.get(file_extension(filename), DEFAULT_SECONDS_PER_MB)
    return round((file_size_bytes / MB) * per_mb, 1)


def expected_chunks(file_size_bytes: int, chunk_size: int | None = None) -> int:
    cs = int(chunk_size or settings.chunk_size_bytes)
    if file_size_bytes <= 0:
        return 0
    return int(math.ceil(file_size_bytes / cs))


def use_chunked_transfer(file_size_bytes: int) -> bool:
    return file_size_bytes >= settings.chunked_transfer_threshold_bytes


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            block = f.read(_HASH_BLOCK)
            if not block:
                break
            h.update(block)
    return h.hexdigest()


# -----------------------------
# Spool
# -----------------------------


def spool_path(job_id: str, filename: str) -> Path:
    safe = Path(filename or "audio").name or "audio"
    return Path(settings.spool_dir) / job_id / safe


def spool_upload(job_id: str, filename: str, fileobj: BinaryIO) -> Path:
    """Copy an incoming upload stream into the spool shared with the workers."""
    dest = spool_path(job_id, filename)
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("wb") as out:
        shutil.copyfileobj(fileobj, out, length=_HASH_BLOCK)
    return dest


def copy_spool(src: Path, job_id: str) -> Path:
    dest = spool_path(job_id, src.name)
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(src, dest)
    return dest


# -----------------------------
# Staging
# -----------------------------


def _progress(db: Session, job_id: str, value: float) -> None:
    ledger.advance(db, job_id, "uploading", value)


def _local_path(db: Session, job: TranscriptionJob) -> Path:
    if job.source == "cloud-file":
        dest = spool_path(job.job_id, job.filename)
        if not dest.exists():
            n = DriveClient(db, job.owner).download_to(job.source_ref or "", dest)
            log.info("[%s] downloaded %s bytes from drive", job.job_id, n)
        return dest

    if not job.source_ref:
        raise TransferError("no spooled audio recorded for this job")
    p = Path(job.source_ref)
    if not p.exists():
        raise TransferError(f"spooled audio is missing: {p.name}")
    return p


def _stage_single(db: Session, job: TranscriptionJob, path: Path, backend: TranscriptionBackend) -> str:
    _progress(db, job.job_id, 10)
    payload = path.read_bytes()
    ref = backend.upload(payload, job.filename)
    _progress(db, job.job_id, 25)
    return ref


def _stage_chunked(db: Session, job: TranscriptionJob, path: Path, size: int, mime_type: str) -> tuple[str, int]:
    """
    S3 multipart upload, one AudioChunk row per part. The upload is only
    completed once the ledger holds a row for every part.
    """
    storage = get_storage()
    key = f"audio/{job.owner}/{job.job_id}/{Path(job.filename).name}"
    total = expected_chunks(size)
    chunk_size = settings.chunk_size_bytes

    upload_id = storage.start_multipart(key, content_type=mime_type)
    sent = 0
    with path.open("rb") as f:
        for idx in range(total):
            data = f.read(chunk_size)
            if not data:
                break
            part_number = idx + 1
            etag = storage.upload_part(key, upload_id, part_number, data)
            ledger.record_chunk(
                db,
                job_id=job.job_id,
                chunk_index=idx,
                size_bytes=len(data),
                storage_key=f"{key}#{part_number}",
                etag=etag,
                sha256=hashlib.sha256(data).hexdigest(),
            )
            sent += len(data)
            _progress(db, job.job_id, 5 + 20 * sent / size)

    recorded = ledger.count_chunks(db, job.job_id)
    if recorded != total:
        raise TransferError(f"only {recorded} of {total} chunks recorded for {key}")

    parts = [(c.chunk_index + 1, c.etag or "") for c in ledger.list_chunks(db, job.job_id)]
    storage.complete_multipart(key, upload_id, parts)
    log.info("[%s] chunked upload complete: %s parts, %s bytes", job.job_id, total, size)
    return storage.presigned_get_url(key), total


def stage(db: Session, job: TranscriptionJob, backend: TranscriptionBackend) -> StagedAudio:
    """
    Make the job's audio readable by its backend. Raises TransferError on any
    failure; chunks that were already uploaded stay where they are.
    """
    try:
        path = _local_path(db, job)
        size = path.stat().st_size
        if size <= 0:
            raise TransferError("audio file is empty")

        digest = sha256_file(path)
        mime_type = job.mime_type or guess_mime_type(job.filename)
        est = estimate_duration_seconds(size, job.filename)

        chunks = 0
        if use_chunked_transfer(size):
            reference, chunks = _stage_chunked(db, job, path, size, mime_type)
        else:
            reference = _stage_single(db, job, path, backend)
    except TransferError:
        raise
    except (BackendError, StorageError, DriveError, DriveAuthError, OSError) as e:
        raise TransferError(str(e)) from e

    return StagedAudio(
        reference=reference,
        file_size=size,
        filename=job.filename,
        sha256=digest,
        mime_type=mime_type,
        estimated_duration_seconds=est,
        chunks=chunks,
    )
