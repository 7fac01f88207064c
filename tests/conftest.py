import os
import shutil
import tempfile
from pathlib import Path

import pytest

# Must be set before anything under scribe_api is imported.
_TMP = Path(tempfile.mkdtemp(prefix="scribe-tests-"))
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["SCRIBE_SPOOL_DIR"] = str(_TMP / "spool")
os.environ["SCRIBE_POLL_INTERVAL_SECONDS"] = "0"
os.environ["SCRIBE_MAX_POLLS"] = "5"
os.environ["WEBHOOK_URL"] = ""
os.environ["ASSEMBLYAI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from scribe_api.core.config import MB, settings  # noqa: E402
from scribe_api.db.base import Base  # noqa: E402
from scribe_api.db.session import SessionLocal, engine  # noqa: E402
from scribe_api.services import backends as backends_mod  # noqa: E402
from scribe_api.services import embeddings as embeddings_mod  # noqa: E402
from scribe_api.services import ledger  # noqa: E402
from scribe_api.services.backends import PollResult, TranscriptionBackend  # noqa: E402
from scribe_api.services.routing import choose_backend  # noqa: E402
from scribe_api.services.storage import StorageError  # noqa: E402
from scribe_api.services.transfer import spool_path  # noqa: E402

SAMPLE_TEXT = (
    "Welcome to the weekly planning meeting. We need to finalize the API integration by Friday. "
    "Sarah Connor will review the database migration. This is great progress."
)

SAMPLE_SEGMENTS = [
    {"speaker": "A", "text": "Welcome to the weekly planning meeting.", "start_ms": 0, "end_ms": 2500},
    {"speaker": "A", "text": "We need to finalize the API integration by Friday.", "start_ms": 2500, "end_ms": 6000},
    {"speaker": "B", "text": "Sarah Connor will review the database migration.", "start_ms": 6000, "end_ms": 9000},
    {"speaker": "B", "text": "This is great progress.", "start_ms": 9000, "end_ms": 10500},
]


def completed_result(text: str = SAMPLE_TEXT) -> PollResult:
    return PollResult(status="completed", text=text, segments=list(SAMPLE_SEGMENTS), duration_seconds=630.0)


class FakeBackend(TranscriptionBackend):
    """Scripted backend: poll() walks through `results`, repeating the last one."""

    backend_id = "fake"

    def __init__(self, results=None, submit_error=None, upload_error=None):
        self.results = list(results or [completed_result()])
        self.submit_error = submit_error
        self.upload_error = upload_error
        self.uploads = []
        self.submits = []
        self.polls = 0

    def upload(self, payload, filename):
        if self.upload_error:
            raise self.upload_error
        self.uploads.append((len(payload), filename))
        return f"https://fake-backend.test/upload/{filename}"

    def submit(self, reference, options=None):
        if self.submit_error:
            raise self.submit_error
        self.submits.append(reference)
        return f"fake-{len(self.submits)}"

    def poll(self, backend_job_id):
        self.polls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class FakeStorage:
    def __init__(self, fail_on_part=None):
        self.fail_on_part = fail_on_part
        self.parts = []
        self.completed = None
        self.started = []

    def start_multipart(self, key, content_type=None):
        self.started.append(key)
        return "upload-1"

    def upload_part(self, key, upload_id, part_number, data):
        if self.fail_on_part == part_number:
            raise StorageError(f"part {part_number} failed")
        self.parts.append((part_number, len(data)))
        return f'"etag-{part_number}"'

    def complete_multipart(self, key, upload_id, parts):
        self.completed = (key, list(parts))

    def presigned_get_url(self, key, ttl_seconds=None):
        return f"https://storage.test/{key}?signature=abc"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def _empty_spool():
    shutil.rmtree(settings.spool_dir, ignore_errors=True)
    yield


@pytest.fixture(autouse=True)
def _fake_embeddings(monkeypatch):
    def fake_embed(texts, *, model_name=embeddings_mod.DEFAULT_EMBED_MODEL, device=None, batch_size=32):
        return [[0.0] * 383 + [1.0] for _ in texts]

    monkeypatch.setattr(embeddings_mod, "embed_texts", fake_embed)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def fake_backend(monkeypatch):
    fb = FakeBackend()
    monkeypatch.setattr(backends_mod, "get_backend", lambda backend_id: fb)
    return fb


@pytest.fixture
def make_job(db):
    """Create a ledger row with a spooled file of `size` bytes behind it."""

    def _make(size=1 * MB, owner="alice", filename="meeting.mp3", **kwargs):
        job_id = kwargs.pop("job_id", None) or ledger.new_job_id()
        path = spool_path(job_id, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x01" * size)
        return ledger.create_job(
            db,
            job_id=job_id,
            owner=owner,
            source=kwargs.pop("source", "local-upload"),
            source_ref=str(path),
            filename=filename,
            file_size_bytes=size,
            backend=kwargs.pop("backend", choose_backend(size)),
            **kwargs,
        )

    return _make
