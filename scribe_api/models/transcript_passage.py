from __future__ import annotations

from pgvector.sqlalchemy import Vector
from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from scribe_api.db.base_class import Base
from scribe_api.models.transcription_job import utcnow


class TranscriptPassage(Base):
    __tablename__ = "transcript_passages"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(64), nullable=False, index=True)

    idx = Column(Integer, nullable=False)
    start_ms = Column(BigInteger, nullable=False)
    end_ms = Column(BigInteger, nullable=False)
    speaker = Column(String(32), nullable=True)
    text = Column(Text, nullable=False)

    model = Column(String(128), nullable=False, default="unknown")
    embedding = Column(Vector(384), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("job_id", "idx", "model", name="uq_transcript_passages_job_idx_model"),
        Index("idx_transcript_passages_time", "job_id", "start_ms", "end_ms"),
    )
