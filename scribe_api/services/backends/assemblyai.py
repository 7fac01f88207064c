from __future__ import annotations

import logging
from typing import Any

import httpx

from scribe_api.core.config import settings
from scribe_api.services.backends.base import (
    POLL_COMPLETED,
    POLL_ERROR,
    POLL_PROCESSING,
    POLL_QUEUED,
    BackendError,
    PollResult,
    TranscriptionBackend,
)
from scribe_api.services.routing import FULL_FEATURED_LARGE_FILE

log = logging.getLogger(__name__)

_STATUS_MAP = {
    "queued": POLL_QUEUED,
    "processing": POLL_PROCESSING,
    "completed": POLL_COMPLETED,
    "error": POLL_ERROR,
}


def utterances_to_segments(utterances: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for u in utterances or []:
        txt = str(u.get("text") or "").strip()
        if not txt:
            continue
        out.append(
            {
                "speaker": u.get("speaker"),
                "text": txt,
                "start_ms": int(u.get("start") or 0),
                "end_ms": int(u.get("end") or 0),
            }
        )
    return out


class AssemblyAIBackend(TranscriptionBackend):
    """Full-featured backend: async jobs, speaker labels, no practical size cap."""

    backend_id = FULL_FEATURED_LARGE_FILE

    def __init__(self, api_key: str | None = None, base_url: str | None = None, timeout: float | None = None):
        self.api_key = api_key or settings.assemblyai_api_key
        self.base_url = (base_url or settings.assemblyai_base_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise BackendError("ASSEMBLYAI_API_KEY is not configured")
        return {"authorization": self.api_key}

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.request(method, url, headers=self._headers(), **kwargs)
                r.raise_for_status()
                return r.json()
        except httpx.HTTPStatusError as e:
            body = (e.response.text or "")[:300]
            raise BackendError(f"AssemblyAI {method} {path} failed: HTTP {e.response.status_code} {body}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"AssemblyAI {method} {path} failed: {e}") from e

    def upload(self, payload: bytes, filename: str) -> str:
        data = self._request("POST", "/upload", content=payload)
        url = data.get("upload_url")
        if not url:
            raise BackendError(f"AssemblyAI upload returned no upload_url for {filename}")
        return str(url)

    def submit(self, reference: str, options: dict[str, Any] | None = None) -> str:
        body: dict[str, Any] = {"audio_url": reference, "speaker_labels": True}
        body.update(options or {})
        data = self._request("POST", "/transcript", json=body)
        tid = data.get("id")
        if not tid:
            raise BackendError("AssemblyAI did not return a transcript id")
        return str(tid)

    def poll(self, backend_job_id: str) -> PollResult:
        data = self._request("GET", f"/transcript/{backend_job_id}")
        raw = str(data.get("status") or "").lower()
        status = _STATUS_MAP.get(raw)
        if status is None:
            log.warning("AssemblyAI returned unknown status %r for %s", raw, backend_job_id)
            status = POLL_PROCESSING

        if status == POLL_ERROR:
            return PollResult(status=POLL_ERROR, error=str(data.get("error") or "Transcription failed"))
        if status != POLL_COMPLETED:
            return PollResult(status=status)

        dur = data.get("audio_duration")
        return PollResult(
            status=POLL_COMPLETED,
            text=str(data.get("text") or ""),
            segments=utterances_to_segments(data.get("utterances")),
            duration_seconds=float(dur) if dur is not None else None,
        )
