from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, Text

from scribe_api.db.base_class import Base
from scribe_api.models.transcription_job import utcnow


class DriveCredential(Base):
    __tablename__ = "drive_credentials"

    id = Column(Integer, primary_key=True, index=True)
    owner = Column(String(128), nullable=False, unique=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
