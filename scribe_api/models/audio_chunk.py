from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from scribe_api.db.base_class import Base
from scribe_api.models.transcription_job import utcnow


class AudioChunk(Base):
    """
    One contiguous byte range of a large upload, as staged to object storage.

    Rows are written one by one as parts land; the transfer counts as complete
    only when every chunk index for the job has a row.
    """

    __tablename__ = "audio_chunks"

    id = Column(Integer, primary_key=True, index=True)

    job_id = Column(
        String(64),
        ForeignKey("transcription_jobs.job_id", ondelete="CASCADE"),
        nullable=False,
    )

    chunk_index = Column(Integer, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    storage_key = Column(Text, nullable=False)
    etag = Column(String(128), nullable=True)
    sha256 = Column(String(64), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("job_id", "chunk_index", name="uq_audio_chunks_job_idx"),
        Index("idx_audio_chunks_job", "job_id"),
    )
