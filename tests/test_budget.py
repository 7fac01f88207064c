from dataclasses import replace
from datetime import timedelta

from scribe_api.core.config import MB, settings
from scribe_api.models.transcription_job import TranscriptionJob, utcnow
from scribe_api.services import budget as budget_mod
from scribe_api.services import ledger
from scribe_api.services.budget import check_budget, estimate_hours, usage_summary


def _used(db, owner, seconds, created_at=None):
    job = ledger.create_job(
        db,
        job_id=ledger.new_job_id(),
        owner=owner,
        source="local-upload",
        filename="x.mp3",
        file_size_bytes=MB,
        backend="fast-small-file",
    )
    job.audio_duration_seconds = seconds
    job.status = "completed"
    if created_at is not None:
        job.created_at = created_at
    db.commit()
    return job


def test_estimate_hours_from_size():
    assert estimate_hours(30 * MB) == 1.0
    assert estimate_hours(0) == 0.0


def test_fresh_owner_is_allowed(db):
    d = check_budget(db, "alice", 2.0)
    assert d.allowed is True
    assert d.reason is None
    assert d.used_hours == 0
    assert d.estimated_cost == round(2.0 * settings.cost_per_audio_hour, 4)


def test_hour_limit_rejection_names_usage_and_request(db):
    _used(db, "alice", 10 * 3600)

    d = check_budget(db, "alice", 45.0)

    assert d.allowed is False
    assert "10.0h" in d.reason
    assert "45.0h" in d.reason
    assert "limit: 50h" in d.reason


def test_exactly_at_limit_is_allowed(db):
    _used(db, "alice", 10 * 3600)
    assert check_budget(db, "alice", 40.0).allowed is True


def test_cost_limit_rejection(db, monkeypatch):
    monkeypatch.setattr(budget_mod, "settings", replace(settings, cost_per_audio_hour=1.0))
    _used(db, "alice", 20 * 3600)

    d = check_budget(db, "alice", 6.0)

    assert d.allowed is False
    assert "cost" in d.reason.lower()


def test_usage_from_previous_days_and_other_owners_is_ignored(db):
    _used(db, "alice", 48 * 3600, created_at=utcnow() - timedelta(days=1, hours=1))
    _used(db, "bob", 48 * 3600)

    d = check_budget(db, "alice", 5.0)
    assert d.allowed is True
    assert d.used_hours == 0


def test_check_has_no_side_effects(db):
    before = db.query(TranscriptionJob).count()
    check_budget(db, "alice", 100.0)
    check_budget(db, "alice", 1.0)
    assert db.query(TranscriptionJob).count() == before


def test_usage_summary(db):
    _used(db, "alice", 2 * 3600)
    s = usage_summary(db, "alice")
    assert s["used_hours"] == 2.0
    assert s["remaining_hours"] == settings.daily_hour_limit - 2.0
