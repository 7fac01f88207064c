from __future__ import annotations

import json
import logging
import shutil
import uuid
from pathlib import Path
from typing import Any

from openai import BadRequestError, OpenAI, OpenAIError, UnprocessableEntityError

from scribe_api.core.config import settings
from scribe_api.db.session import SessionLocal
from scribe_api.models.backend_result import BackendResult
from scribe_api.services.backends.base import (
    POLL_COMPLETED,
    POLL_ERROR,
    BackendError,
    PollResult,
    TranscriptionBackend,
    local_path_from_uri,
)
from scribe_api.services.routing import FAST_SMALL_FILE

log = logging.getLogger(__name__)


def path_from_file_uri(uri: str) -> Path:
    path = local_path_from_uri(uri)
    if path is None:
        raise BackendError(f"Whisper backend needs a file:// reference, got {uri!r}")
    return path


def _field(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _segments(resp: Any) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for s in getattr(resp, "segments", None) or []:
        txt = str(_field(s, "text") or "").strip()
        if not txt:
            continue
        out.append(
            {
                "speaker": None,
                "text": txt,
                "start_ms": int(float(_field(s, "start") or 0.0) * 1000),
                "end_ms": int(float(_field(s, "end") or 0.0) * 1000),
            }
        )
    return out


class WhisperBackend(TranscriptionBackend):
    """
    Fast backend for small files. The OpenAI call is synchronous, so submit
    runs it to completion and stores the outcome in backend_results under a
    wh_<uuid> id; poll reads that row back from any process.
    """

    backend_id = FAST_SMALL_FILE

    def __init__(self, api_key: str | None = None, model: str | None = None, staging_dir: str | None = None):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.whisper_model
        self.staging_dir = Path(staging_dir or settings.spool_dir) / "_whisper"

    def _client(self) -> OpenAI:
        if not self.api_key:
            raise BackendError("OPENAI_API_KEY is not configured")
        return OpenAI(api_key=self.api_key, timeout=settings.http_timeout_seconds)

    def upload(self, payload: bytes, filename: str) -> str:
        d = self.staging_dir / uuid.uuid4().hex
        d.mkdir(parents=True, exist_ok=True)
        p = d / (Path(filename).name or "audio")
        p.write_bytes(payload)
        return p.resolve().as_uri()

    def submit(self, reference: str, options: dict[str, Any] | None = None) -> str:
        path = path_from_file_uri(reference)
        if not path.exists():
            raise BackendError(f"Staged audio not found: {path}")

        client = self._client()
        kwargs: dict[str, Any] = {"model": self.model, "response_format": "verbose_json"}
        lang = (options or {}).get("language")
        if lang:
            kwargs["language"] = lang

        backend_job_id = f"wh_{uuid.uuid4().hex}"
        try:
            with path.open("rb") as f:
                resp = client.audio.transcriptions.create(file=f, **kwargs)
        except (BadRequestError, UnprocessableEntityError) as e:
            # 400/422: the audio itself was refused
            self._store(
                BackendResult(
                    backend_job_id=backend_job_id,
                    status=POLL_ERROR,
                    error=f"Whisper rejected the audio: {e}",
                )
            )
            log.warning("whisper rejected %s; stored as %s", path.name, backend_job_id)
            self._discard_staging(path)
            return backend_job_id
        except OpenAIError as e:
            raise BackendError(f"Whisper transcription failed: {e}") from e

        dur = getattr(resp, "duration", None)
        self._store(
            BackendResult(
                backend_job_id=backend_job_id,
                status=POLL_COMPLETED,
                text=getattr(resp, "text", "") or "",
                segments_json=json.dumps(_segments(resp), ensure_ascii=False),
                duration_seconds=float(dur) if dur is not None else None,
            )
        )
        log.info("whisper transcription stored as %s (%s)", backend_job_id, path.name)
        self._discard_staging(path)
        return backend_job_id

    def _discard_staging(self, path: Path) -> None:
        """Drop the staging copy once its outcome is stored. Only our own staging dirs are touched."""
        root = self.staging_dir.resolve()
        d = path.resolve().parent
        if root in d.parents:
            shutil.rmtree(d, ignore_errors=True)

    def _store(self, row: BackendResult) -> None:
        db = SessionLocal()
        try:
            db.add(row)
            db.commit()
        finally:
            db.close()

    def poll(self, backend_job_id: str) -> PollResult:
        db = SessionLocal()
        try:
            row = db.query(BackendResult).filter(BackendResult.backend_job_id == backend_job_id).first()
            if row is None:
                raise BackendError(f"Unknown whisper job {backend_job_id}")
            if row.status == POLL_ERROR:
                return PollResult(status=POLL_ERROR, error=row.error or "Transcription failed")
            try:
                segs = json.loads(row.segments_json or "[]")
            except ValueError:
                segs = []
            return PollResult(
                status=POLL_COMPLETED,
                text=row.text or "",
                segments=segs if isinstance(segs, list) else [],
                duration_seconds=row.duration_seconds,
            )
        finally:
            db.close()
