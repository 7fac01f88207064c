from datetime import timedelta

from conftest import FakeBackend, completed_result
from scribe_api.models.transcription_job import TranscriptionJob, utcnow
from scribe_api.services import backends as backends_mod
from scribe_api.services import ledger
from scribe_api.services.backends import PollResult
from scribe_api.services.ledger import as_utc
from scribe_api.services.orchestrator import NOT_FOUND_MESSAGE, get_status, run_job


def _use(monkeypatch, backend):
    monkeypatch.setattr(backends_mod, "get_backend", lambda backend_id: backend)
    return backend


def _submitted(db, make_job, backend_job_id="remote-1"):
    job = make_job()
    ledger.set_backend_job_id(db, job.job_id, backend_job_id, progress=30)
    return ledger.get_job(db, job.job_id)


def test_terminal_status_is_idempotent_and_offline(db, make_job, fake_backend, monkeypatch):
    job = make_job()
    run_job(db, job.job_id, poll_interval=0)

    def no_backend(backend_id):
        raise AssertionError("terminal jobs must not reach the backend")

    monkeypatch.setattr(backends_mod, "get_backend", no_backend)
    first = get_status(db, job.job_id)
    second = get_status(db, job.job_id)

    assert first == second
    assert first.status == "completed"
    assert first.progress == 100


def test_job_submitted_elsewhere_is_finalized_by_status_request(db, make_job, fake_backend):
    job = _submitted(db, make_job)

    view = get_status(db, job.job_id)

    assert fake_backend.polls == 1
    assert view.status == "completed"
    assert view.result["text"]
    assert fake_backend.uploads == []


def test_in_flight_progress_is_interpolated(db, make_job, monkeypatch):
    _use(monkeypatch, FakeBackend(results=[PollResult(status="processing")]))
    job = _submitted(db, make_job)
    start = as_utc(job.submitted_at)

    # 1 MB ~ 120 s of audio -> 36 s expected processing; halfway is 60%
    mid = get_status(db, job.job_id, now=start + timedelta(seconds=18))
    assert mid.status == "processing"
    assert mid.progress == 60
    assert mid.eta_seconds == (100 - 60) * 3

    late = get_status(db, job.job_id, now=start + timedelta(hours=2))
    assert late.progress == 90

    # an earlier clock never pulls progress back
    again = get_status(db, job.job_id, now=start + timedelta(seconds=1))
    assert again.progress == 90


def test_backend_error_seen_by_status_request(db, make_job, monkeypatch):
    _use(monkeypatch, FakeBackend(results=[PollResult(status="error", error="corrupt audio")]))
    job = _submitted(db, make_job)

    view = get_status(db, job.job_id)

    assert (view.status, view.progress, view.error) == ("error", 0, "corrupt audio")


def test_poll_exception_returns_stored_view(db, make_job, monkeypatch):
    class Down(FakeBackend):
        def poll(self, backend_job_id):
            raise ConnectionError("backend unreachable")

    _use(monkeypatch, Down())
    job = _submitted(db, make_job)

    view = get_status(db, job.job_id)

    assert view.status == "submitted"
    assert view.progress == 30
    assert ledger.get_job(db, job.job_id).status == "submitted"


def test_job_not_yet_submitted_is_not_polled(db, make_job, fake_backend):
    job = make_job()
    view = get_status(db, job.job_id)
    assert view.status == "starting"
    assert view.eta_seconds == 300
    assert fake_backend.polls == 0


def test_missing_row_young_id_is_optimistic(db):
    now = utcnow()
    jid = ledger.new_job_id(now - timedelta(seconds=30))

    view = get_status(db, jid, now=now)

    assert (view.status, view.progress, view.error) == ("starting", 0, None)


def test_missing_row_old_id_is_an_error(db):
    now = utcnow()
    jid = ledger.new_job_id(now - timedelta(minutes=5))

    view = get_status(db, jid, now=now)

    assert view.status == "error"
    assert view.error == NOT_FOUND_MESSAGE


def test_missing_row_unparseable_id_is_an_error(db):
    view = get_status(db, "not-a-job-id")
    assert view.status == "error"
    assert view.error == NOT_FOUND_MESSAGE


def _stuck(db, make_job, status, age):
    job = _submitted(db, make_job)
    ledger.claim(db, job.job_id, ("submitted",), status, progress=92 if status == "analyzing" else 95)
    db.query(TranscriptionJob).filter(TranscriptionJob.job_id == job.job_id).update(
        {"updated_at": utcnow() - age}, synchronize_session=False
    )
    db.commit()
    return job.job_id


def test_stale_finalize_is_resumed(db, make_job, fake_backend):
    job_id = _stuck(db, make_job, "saving", timedelta(minutes=15))

    view = get_status(db, job_id)

    assert fake_backend.polls == 1
    assert view.status == "completed"
    assert view.result["text"] == completed_result().text


def test_recent_finalize_is_left_alone(db, make_job, fake_backend):
    job_id = _stuck(db, make_job, "analyzing", timedelta(minutes=2))

    view = get_status(db, job_id)

    assert fake_backend.polls == 0
    assert view.status == "analyzing"
    assert view.progress == 92
