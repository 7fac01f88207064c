from __future__ import annotations

from scribe_api.services.backends.base import (
    POLL_COMPLETED,
    POLL_ERROR,
    POLL_PROCESSING,
    POLL_QUEUED,
    BackendError,
    PollResult,
    TranscriptionBackend,
    local_path_from_uri,
)
from scribe_api.services.routing import FAST_SMALL_FILE, FULL_FEATURED_LARGE_FILE


def get_backend(backend_id: str) -> TranscriptionBackend:
    # Imported lazily so the openai SDK is only loaded where it's used.
    if backend_id == FAST_SMALL_FILE:
        from scribe_api.services.backends.whisper import WhisperBackend

        return WhisperBackend()
    if backend_id == FULL_FEATURED_LARGE_FILE:
        from scribe_api.services.backends.assemblyai import AssemblyAIBackend

        return AssemblyAIBackend()
    raise ValueError(f"Unknown backend: {backend_id}")


__all__ = [
    "BackendError",
    "PollResult",
    "TranscriptionBackend",
    "get_backend",
    "local_path_from_uri",
    "POLL_QUEUED",
    "POLL_PROCESSING",
    "POLL_COMPLETED",
    "POLL_ERROR",
]
