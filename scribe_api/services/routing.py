from __future__ import annotations

from dataclasses import dataclass

from scribe_api.core.config import settings

FAST_SMALL_FILE = "fast-small-file"
FULL_FEATURED_LARGE_FILE = "full-featured-large-file"

BACKEND_IDS = (FAST_SMALL_FILE, FULL_FEATURED_LARGE_FILE)


@dataclass(frozen=True)
class BackendProfile:
    backend_id: str
    provider: str
    speaker_labels: bool
    max_upload_bytes: int | None
    cost_per_audio_hour: float
    asynchronous: bool


BACKEND_PROFILES: dict[str, BackendProfile] = {
    FAST_SMALL_FILE: BackendProfile(
        backend_id=FAST_SMALL_FILE,
        provider="openai-whisper",
        speaker_labels=False,
        max_upload_bytes=settings.small_file_threshold_bytes,
        cost_per_audio_hour=0.36,
        asynchronous=False,
    ),
    FULL_FEATURED_LARGE_FILE: BackendProfile(
        backend_id=FULL_FEATURED_LARGE_FILE,
        provider="assemblyai",
        speaker_labels=True,
        max_upload_bytes=None,
        cost_per_audio_hour=settings.cost_per_audio_hour,
        asynchronous=True,
    ),
}


def choose_backend(file_size_bytes: int) -> str:
    """
    The only routing decision in the service. Uploads, drive imports and
    retries all call this; the result is stored on the job and never changes.
    """
    if file_size_bytes is None or int(file_size_bytes) < 0:
        raise ValueError(f"file size must be >= 0, got {file_size_bytes!r}")
    if int(file_size_bytes) < settings.small_file_threshold_bytes:
        return FAST_SMALL_FILE
    return FULL_FEATURED_LARGE_FILE
