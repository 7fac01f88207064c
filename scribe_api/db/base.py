from scribe_api.db.base_class import Base  # noqa: F401

# Import all the models here so that Base has them registered
# This file should NOT be imported by models.
from scribe_api.models.transcription_job import TranscriptionJob  # noqa: F401
from scribe_api.models.audio_chunk import AudioChunk  # noqa: F401
from scribe_api.models.backend_result import BackendResult  # noqa: F401
from scribe_api.models.drive_credential import DriveCredential  # noqa: F401
from scribe_api.models.knowledge_document import KnowledgeDocument  # noqa: F401
from scribe_api.models.transcript_passage import TranscriptPassage  # noqa: F401
