import hashlib
from dataclasses import replace
from pathlib import Path

import pytest

from conftest import FakeBackend, FakeStorage
from scribe_api.core.config import MB, settings
from scribe_api.models.drive_credential import DriveCredential
from scribe_api.services import ledger
from scribe_api.services import transfer as transfer_mod
from scribe_api.services.backends import BackendError
from scribe_api.services.transfer import (
    TransferError,
    estimate_duration_seconds,
    expected_chunks,
    guess_mime_type,
    is_supported,
    stage,
)


@pytest.fixture
def small_chunks(monkeypatch):
    """Chunked transfer from 1000 bytes in 400-byte parts."""
    monkeypatch.setattr(
        transfer_mod,
        "settings",
        replace(settings, chunked_transfer_threshold_bytes=1000, chunk_size_bytes=400),
    )


def test_metadata_helpers():
    assert is_supported("talk.M4A")
    assert not is_supported("notes.txt")
    assert guess_mime_type("a.mp3") == "audio/mpeg"
    assert estimate_duration_seconds(2 * MB, "a.mp3") == 120.0
    assert estimate_duration_seconds(2 * MB, "a.flac") == 90.0
    assert expected_chunks(250 * MB, 25 * MB) == 10
    assert expected_chunks(251 * MB, 25 * MB) == 11


def test_small_file_is_uploaded_whole(db, make_job):
    job = make_job(size=2 * MB)
    ledger.advance(db, job.job_id, "uploading", 5)
    backend = FakeBackend()

    staged = stage(db, ledger.get_job(db, job.job_id), backend)

    assert backend.uploads == [(2 * MB, "meeting.mp3")]
    assert staged.reference == "https://fake-backend.test/upload/meeting.mp3"
    assert staged.sha256 == hashlib.sha256(b"\x01" * 2 * MB).hexdigest()
    assert staged.mime_type == "audio/mpeg"
    assert staged.chunks == 0
    assert ledger.get_job(db, job.job_id).progress == 25


def test_large_file_writes_one_chunk_row_per_part(db, make_job, monkeypatch, small_chunks):
    storage = FakeStorage()
    monkeypatch.setattr(transfer_mod, "get_storage", lambda: storage)
    job = make_job(size=1900, source="chunked-upload")
    ledger.advance(db, job.job_id, "uploading", 5)

    staged = stage(db, ledger.get_job(db, job.job_id), FakeBackend())

    assert staged.chunks == 5
    assert ledger.count_chunks(db, job.job_id) == 5
    assert [n for n, _ in storage.parts] == [1, 2, 3, 4, 5]
    assert [size for _, size in storage.parts] == [400, 400, 400, 400, 300]
    assert storage.completed[1] == [(i, f'"etag-{i}"') for i in range(1, 6)]
    assert staged.reference.startswith("https://storage.test/audio/alice/")
    assert ledger.get_job(db, job.job_id).progress == 25


def test_failed_part_leaves_earlier_chunks_and_raises(db, make_job, monkeypatch, small_chunks):
    storage = FakeStorage(fail_on_part=3)
    monkeypatch.setattr(transfer_mod, "get_storage", lambda: storage)
    job = make_job(size=1900, source="chunked-upload")
    ledger.advance(db, job.job_id, "uploading", 5)

    with pytest.raises(TransferError):
        stage(db, ledger.get_job(db, job.job_id), FakeBackend())

    assert ledger.count_chunks(db, job.job_id) == 2
    assert storage.completed is None


def test_missing_spool_file_is_a_transfer_error(db, make_job):
    job = make_job(size=100)
    Path(job.source_ref).unlink()
    with pytest.raises(TransferError):
        stage(db, ledger.get_job(db, job.job_id), FakeBackend())


def test_backend_upload_failure_is_a_transfer_error(db, make_job):
    job = make_job(size=100)
    ledger.advance(db, job.job_id, "uploading", 5)
    with pytest.raises(TransferError, match="upload refused"):
        stage(db, ledger.get_job(db, job.job_id), FakeBackend(upload_error=BackendError("upload refused")))


def test_cloud_file_is_downloaded_then_staged(db, monkeypatch):
    class FakeDrive:
        def __init__(self, db, owner):
            assert owner == "alice"

        def download_to(self, file_id, dest):
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(b"\x02" * 300)
            return 300

    monkeypatch.setattr(transfer_mod, "DriveClient", FakeDrive)
    db.add(DriveCredential(owner="alice", access_token="tok"))
    db.commit()
    job = ledger.create_job(
        db,
        job_id=ledger.new_job_id(),
        owner="alice",
        source="cloud-file",
        source_ref="drive-file-1",
        filename="voice.m4a",
        file_size_bytes=300,
        backend="fast-small-file",
    )
    ledger.advance(db, job.job_id, "uploading", 5)
    backend = FakeBackend()

    staged = stage(db, ledger.get_job(db, job.job_id), backend)

    assert backend.uploads == [(300, "voice.m4a")]
    assert staged.file_size == 300
