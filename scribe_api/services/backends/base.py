from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse
from urllib.request import url2pathname

# Poll statuses a backend may report.
POLL_QUEUED = "queued"
POLL_PROCESSING = "processing"
POLL_COMPLETED = "completed"
POLL_ERROR = "error"


class BackendError(Exception):
    pass


def local_path_from_uri(reference: str | None) -> Path | None:
    """Filesystem path behind a file:// staging reference, or None for remote ones."""
    p = urlparse(reference or "")
    if p.scheme != "file":
        return None
    return Path(url2pathname(p.path))


@dataclass
class PollResult:
    status: str
    text: str | None = None
    segments: list[dict[str, Any]] = field(default_factory=list)
    duration_seconds: float | None = None
    error: str | None = None

    @property
    def is_done(self) -> bool:
        return self.status in (POLL_COMPLETED, POLL_ERROR)


class TranscriptionBackend:
    """
    upload -> reference, submit(reference) -> backend job id, poll(id) -> PollResult.

    poll must work from any process given only the id, since the task that
    submitted may not be the one that resolves status.
    """

    backend_id: str = ""

    def upload(self, payload: bytes, filename: str) -> str:
        raise NotImplementedError

    def submit(self, reference: str, options: dict[str, Any] | None = None) -> str:
        raise NotImplementedError

    def poll(self, backend_job_id: str) -> PollResult:
        raise NotImplementedError
