from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.models.audio_chunk import AudioChunk
from scribe_api.models.backend_result import BackendResult
from scribe_api.models.drive_credential import DriveCredential  # noqa: F401
from scribe_api.models.knowledge_document import KnowledgeDocument  # noqa: F401
from scribe_api.models.transcript_passage import TranscriptPassage  # noqa: F401

__all__ = ["TranscriptionJob", "AudioChunk", "BackendResult"]
