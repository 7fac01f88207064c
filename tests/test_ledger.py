import re
from datetime import timedelta

import pytest

from scribe_api.core.config import MB
from scribe_api.models.transcription_job import TranscriptionJob, utcnow
from scribe_api.services import ledger
from scribe_api.services.ledger import InvalidTransition


def _job(db, **kw):
    return ledger.create_job(
        db,
        job_id=kw.pop("job_id", None) or ledger.new_job_id(),
        owner=kw.pop("owner", "alice"),
        source="local-upload",
        filename="a.mp3",
        file_size_bytes=MB,
        backend="fast-small-file",
        **kw,
    )


def test_job_id_format_and_timestamp():
    now = utcnow()
    jid = ledger.new_job_id(now)
    assert re.fullmatch(r"tx_\d{13}_[a-z0-9]{9}", jid)
    ts = ledger.job_id_timestamp(jid)
    assert abs((ts - now).total_seconds()) < 0.01


def test_job_id_timestamp_unparseable():
    assert ledger.job_id_timestamp("nope") is None
    assert ledger.job_id_timestamp("tx_abc_123") is None


def test_new_job_starts_at_zero(db):
    job = _job(db)
    assert job.status == "starting"
    assert job.progress == 0
    assert job.project == "general"


def test_advance_forward_and_skip(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "uploading", 10)
    j = ledger.advance(db, job.job_id, "processing", 40)
    assert j.status == "processing"
    assert j.progress == 40


def test_advance_rejects_backward_moves(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "processing", 40)
    with pytest.raises(InvalidTransition):
        ledger.advance(db, job.job_id, "uploading", 10)


def test_progress_never_decreases(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "uploading", 20)
    j = ledger.advance(db, job.job_id, "uploading", 10)
    assert j.progress == 20


def test_terminal_states_are_absorbing(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "completed")
    with pytest.raises(InvalidTransition):
        ledger.advance(db, job.job_id, "processing", 50)
    with pytest.raises(InvalidTransition):
        ledger.advance(db, job.job_id, "error")

    assert ledger.fail(db, job.job_id, "late failure") is False
    j = ledger.get_job(db, job.job_id)
    assert j.status == "completed"
    assert j.progress == 100


def test_fail_sets_message_and_zero_progress(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "processing", 55)
    assert ledger.fail(db, job.job_id, "corrupt audio") is True
    j = ledger.get_job(db, job.job_id)
    assert (j.status, j.progress, j.error_message) == ("error", 0, "corrupt audio")



def test_fail_can_be_limited_to_given_states(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "saving", 95)
    assert ledger.fail(db, job.job_id, "late driver error", from_statuses=("submitted", "processing")) is False
    assert ledger.get_job(db, job.job_id).status == "saving"
    assert ledger.fail(db, job.job_id, "save failed", from_statuses=("saving",)) is True
    assert ledger.get_job(db, job.job_id).status == "error"


def test_backend_job_id_is_write_once(db):
    job = _job(db)
    j = ledger.set_backend_job_id(db, job.job_id, "bk-1", progress=30)
    assert j.status == "submitted"
    assert j.submitted_at is not None

    # same value again is a no-op
    ledger.set_backend_job_id(db, job.job_id, "bk-1")
    with pytest.raises(InvalidTransition):
        ledger.set_backend_job_id(db, job.job_id, "bk-2")
    assert ledger.get_job(db, job.job_id).backend_job_id == "bk-1"


def test_claim_succeeds_exactly_once(db):
    job = _job(db)
    ledger.set_backend_job_id(db, job.job_id, "bk-1", progress=30)

    first = ledger.claim(db, job.job_id, ("submitted", "processing"), "analyzing", progress=92)
    second = ledger.claim(db, job.job_id, ("submitted", "processing"), "analyzing", progress=92)

    assert (first, second) == (True, False)
    assert ledger.get_job(db, job.job_id).status == "analyzing"


def test_claim_never_lowers_progress(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "processing", 70)
    assert ledger.claim(db, job.job_id, ("processing",), "processing", progress=50) is False
    assert ledger.get_job(db, job.job_id).progress == 70


def test_complete_only_from_saving(db):
    job = _job(db)
    assert ledger.complete(db, job.job_id, text="hi", segments=[], duration_seconds=1.0) is False

    ledger.advance(db, job.job_id, "saving", 95)
    ok = ledger.complete(
        db,
        job.job_id,
        text="hello",
        segments=[{"speaker": "A", "text": "hello", "start_ms": 0, "end_ms": 500}],
        duration_seconds=12.5,
        analysis={"tags": ["meeting"], "category": "business", "importance_score": 0.7},
    )
    assert ok is True
    j = ledger.get_job(db, job.job_id)
    assert (j.status, j.progress, j.text) == ("completed", 100, "hello")
    assert j.tags == ["meeting"]
    assert j.speaker_segments[0]["speaker"] == "A"
    assert ledger.resolve_record_id(db, job.job_id) == j.id


def test_list_jobs_newest_first(db):
    a = _job(db)
    b = _job(db)
    _job(db, owner="bob")
    ids = [j.job_id for j in ledger.list_jobs(db, "alice", limit=10)]
    assert ids == [b.job_id, a.job_id]
    assert len(ledger.list_jobs(db, "alice", limit=1)) == 1


def test_chunks_are_recorded_once_per_index(db):
    job = _job(db)
    for idx in (2, 0, 1):
        ledger.record_chunk(db, job_id=job.job_id, chunk_index=idx, size_bytes=10, storage_key=f"k#{idx}")
    ledger.record_chunk(db, job_id=job.job_id, chunk_index=1, size_bytes=10, storage_key="k#1", etag="e")

    assert ledger.count_chunks(db, job.job_id) == 3
    assert ledger.is_fully_staged(db, job.job_id, 3) is True
    assert ledger.is_fully_staged(db, job.job_id, 4) is False
    assert [c.chunk_index for c in ledger.list_chunks(db, job.job_id)] == [0, 1, 2]


def test_daily_usage_sums_durations(db):
    for secs in (600, 1200):
        j = _job(db)
        j.audio_duration_seconds = secs
        db.commit()
    _job(db)  # no duration yet
    assert ledger.daily_usage_seconds(db, "alice", utcnow() - timedelta(hours=1)) == 1800


def test_reclaim_stale_only_when_quiet(db):
    job = _job(db)
    ledger.advance(db, job.job_id, "analyzing", 92)
    now = utcnow()
    assert ledger.reclaim_stale(db, job.job_id, ("analyzing", "saving"), now - timedelta(minutes=10)) is False

    db.query(TranscriptionJob).filter(TranscriptionJob.job_id == job.job_id).update(
        {"updated_at": now - timedelta(minutes=30)}, synchronize_session=False
    )
    db.commit()
    assert ledger.reclaim_stale(db, job.job_id, ("analyzing", "saving"), now - timedelta(minutes=10)) is True
    assert ledger.reclaim_stale(db, job.job_id, ("analyzing", "saving"), now - timedelta(minutes=10)) is False
