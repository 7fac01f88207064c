from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import BigInteger, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from scribe_api.db.base_class import Base

# Lifecycle order; "error" sits outside it and is reachable from any non-terminal state.
STATUS_ORDER = ("starting", "uploading", "submitted", "processing", "analyzing", "saving", "completed")
TERMINAL_STATUSES = frozenset({"completed", "error"})

SOURCES = ("local-upload", "chunked-upload", "cloud-file")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _loads_list(raw: str | None) -> list[Any]:
    if not raw:
        return []
    try:
        v = json.loads(raw)
    except ValueError:
        return []
    return v if isinstance(v, list) else []


class TranscriptionJob(Base):
    __tablename__ = "transcription_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    project: Mapped[str] = mapped_column(String(128), nullable=False, default="general")

    # source
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # local-upload|chunked-upload|cloud-file
    source_ref: Mapped[str | None] = mapped_column(Text, nullable=True)  # spool path or drive file id
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    content_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    estimated_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    # backend
    backend: Mapped[str] = mapped_column(String(64), nullable=False)  # fast-small-file|full-featured-large-file
    backend_job_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    staged_ref: Mapped[str | None] = mapped_column(Text, nullable=True)

    # lifecycle
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="starting")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_of: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # results
    audio_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    text: Mapped[str | None] = mapped_column(Text, nullable=True)
    speaker_segments_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # [{speaker,text,start_ms,end_ms}]

    # analysis (empty when analysis failed)
    tags_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_items_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    topics_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    sentiment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    importance_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_transcription_jobs_owner_created", "owner", "created_at"),
        Index("idx_transcription_jobs_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def speaker_segments(self) -> list[dict[str, Any]]:
        return _loads_list(self.speaker_segments_json)

    @property
    def tags(self) -> list[str]:
        return _loads_list(self.tags_json)

    @property
    def action_items(self) -> list[str]:
        return _loads_list(self.action_items_json)

    @property
    def topics(self) -> list[str]:
        return _loads_list(self.topics_json)
