from __future__ import annotations

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text

from scribe_api.db.base_class import Base
from scribe_api.models.transcription_job import utcnow


class KnowledgeDocument(Base):
    """
    Knowledge-base entry written by enrichment after a transcription completes.

    Kept apart from transcription_jobs: enrichment may fail or be re-run
    without touching the ledger row.
    """

    __tablename__ = "knowledge_documents"

    id = Column(Integer, primary_key=True, index=True)
    owner = Column(String(128), nullable=False, index=True)

    source_type = Column(String(64), nullable=False, default="audio_transcription")
    source_id = Column(String(64), nullable=False)  # transcription job_id

    title = Column(String(512), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(64), nullable=True)
    importance = Column(Float, nullable=True)
    tags_json = Column(Text, nullable=True)
    metadata_json = Column(Text, nullable=True)

    model = Column(String(128), nullable=False, default="unknown")
    embedding = Column(Vector(384), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_knowledge_documents_source", "source_type", "source_id"),
    )
