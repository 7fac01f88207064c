import json
from dataclasses import replace

from conftest import FakeBackend, completed_result
from scribe_api.core.config import settings
from scribe_api.models.knowledge_document import KnowledgeDocument
from scribe_api.models.transcript_passage import TranscriptPassage
from scribe_api.services import backends as backends_mod
from scribe_api.services import enrichment, knowledge, ledger, notifier
from scribe_api.services.knowledge import segments_to_passages, text_to_passages
from scribe_api.services.orchestrator import run_job
from scribe_api.worker import enrichment_tasks


def _completed(db, make_job, fake_backend):
    job = make_job()
    run_job(db, job.job_id, poll_interval=0)
    return job.job_id


def test_completion_writes_knowledge_and_passages(db, make_job, fake_backend):
    job_id = _completed(db, make_job, fake_backend)

    doc = db.query(KnowledgeDocument).filter(KnowledgeDocument.source_id == job_id).one()
    assert doc.source_type == "audio_transcription"
    assert doc.owner == "alice"
    assert "meeting" in json.loads(doc.tags_json)
    assert doc.title == "Audio: meeting.mp3"

    passages = db.query(TranscriptPassage).filter(TranscriptPassage.job_id == job_id).order_by(TranscriptPassage.idx).all()
    assert [p.speaker for p in passages] == ["A", "B"]
    assert passages[0].start_ms == 0
    assert passages[1].end_ms == 10500


def test_fan_out_dispatches_all_three(monkeypatch):
    sent = []
    for task in enrichment.ENRICHMENT_TASKS:
        monkeypatch.setattr(task, "apply_async", lambda kwargs, _name=task.name: sent.append((_name, kwargs)))

    assert enrichment.fan_out("tx_1_abc") == 3
    assert [name for name, _ in sent] == ["enrich.store_knowledge", "enrich.index_passages", "enrich.notify"]
    assert all(kw == {"job_id": "tx_1_abc"} for _, kw in sent)


def test_one_dispatch_failure_does_not_stop_the_others(monkeypatch):
    sent = []

    def broker_down(kwargs):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(enrichment_tasks.store_knowledge, "apply_async", broker_down)
    monkeypatch.setattr(enrichment_tasks.index_passages, "apply_async", lambda kwargs: sent.append("passages"))
    monkeypatch.setattr(enrichment_tasks.notify, "apply_async", lambda kwargs: sent.append("notify"))

    assert enrichment.fan_out("tx_1_abc") == 2
    assert sent == ["passages", "notify"]


def test_failing_destination_leaves_job_completed(db, make_job, fake_backend, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("pgvector unavailable")

    monkeypatch.setattr(knowledge, "store_knowledge_document", broken)
    job_id = _completed(db, make_job, fake_backend)

    assert ledger.get_job(db, job_id).status == "completed"
    assert db.query(KnowledgeDocument).count() == 0
    assert db.query(TranscriptPassage).filter(TranscriptPassage.job_id == job_id).count() == 2

    res = enrichment_tasks.store_knowledge(job_id)
    assert res["ok"] is False
    assert "pgvector unavailable" in res["error"]


def test_tasks_skip_jobs_that_are_not_completed(db, make_job):
    job = make_job()
    assert enrichment_tasks.index_passages(job.job_id)["ok"] is False
    assert enrichment_tasks.notify("tx_0_missing")["ok"] is False


def test_notify_sends_completion_and_urgent_events(db, make_job, monkeypatch):
    events = []
    def record(event_type, owner, data, priority="medium"):
        events.append((event_type, priority))
        return True

    monkeypatch.setattr(notifier, "send_event", record)

    urgent = FakeBackend(results=[completed_result("This is urgent, we need to fix the login bug ASAP today.")])
    monkeypatch.setattr(backends_mod, "get_backend", lambda backend_id: urgent)
    job = make_job()
    run_job(db, job.job_id, poll_interval=0)

    assert events == [("transcription_complete", "urgent"), ("urgent_notification", "urgent")]


def test_send_event_without_webhook_is_skipped(monkeypatch):
    monkeypatch.setattr(notifier, "settings", replace(settings, webhook_url=None))
    assert notifier.send_event("transcription_complete", "alice", {}) is False


def test_passages_split_on_speaker_and_length():
    segs = [
        {"speaker": "A", "text": "one", "start_ms": 0, "end_ms": 10_000},
        {"speaker": "A", "text": "two", "start_ms": 10_000, "end_ms": 30_000},
        {"speaker": "A", "text": "three", "start_ms": 30_000, "end_ms": 50_000},
        {"speaker": "B", "text": "four", "start_ms": 50_000, "end_ms": 51_000},
        {"speaker": "B", "text": "  ", "start_ms": 51_000, "end_ms": 52_000},
    ]
    out = segments_to_passages(segs, max_seconds=35, max_chars=900)
    assert [(p["speaker"], p["text"]) for p in out] == [("A", "one two"), ("A", "three"), ("B", "four")]
    assert [p["idx"] for p in out] == [0, 1, 2]
    assert (out[1]["start_ms"], out[1]["end_ms"]) == (30_000, 50_000)


def test_text_fallback_passages():
    out = text_to_passages("First sentence. Second sentence. Third one", max_chars=31)
    assert [p["text"] for p in out] == ["First sentence. Second sentence", "Third one"]
