from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Integer, String, Text

from scribe_api.db.base_class import Base
from scribe_api.models.transcription_job import utcnow


class BackendResult(Base):
    """
    Durable result store for synchronous backends.

    A synchronous backend finishes inside submit(); writing the outcome here
    keeps poll(backend_job_id) answerable from any process.
    """

    __tablename__ = "backend_results"

    id = Column(Integer, primary_key=True, index=True)
    backend_job_id = Column(String(128), nullable=False, unique=True)
    status = Column(String(32), nullable=False)  # completed|error
    text = Column(Text, nullable=True)
    segments_json = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
