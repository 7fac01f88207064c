import json

import pytest
from fastapi.testclient import TestClient

from scribe_api.main import app
from scribe_api.services import ledger
from scribe_api.services.export import ExportError, export_transcript, format_timestamp
from scribe_api.services.orchestrator import run_job

client = TestClient(app)


@pytest.fixture
def completed_job(db, make_job, fake_backend):
    job = make_job(filename="weekly sync.mp3")
    run_job(db, job.job_id, poll_interval=0)
    return ledger.get_job(db, job.job_id)


def test_timestamps():
    assert format_timestamp(0) == "00:00:00,000"
    assert format_timestamp(2500) == "00:00:02,500"
    assert format_timestamp(3_723_004) == "01:02:03,004"
    assert format_timestamp(3_723_004, ".") == "01:02:03.004"
    assert format_timestamp(-5) == "00:00:00,000"


def test_srt_cues_follow_segments(completed_job):
    out = export_transcript(completed_job, "srt")
    assert out.filename == "weekly sync_subtitles.srt"
    assert out.content.startswith(
        "1\n00:00:00,000 --> 00:00:02,500\nSpeaker A: Welcome to the weekly planning meeting.\n\n2\n"
    )
    assert "4\n00:00:09,000 --> 00:00:10,500\nSpeaker B: This is great progress.\n" in out.content


def test_vtt_has_header_and_dot_separator(completed_job):
    content = export_transcript(completed_job, "vtt").content
    assert content.startswith("WEBVTT\n\n1\n00:00:00.000 --> 00:00:02.500\n")
    assert "," not in content.splitlines()[3]


def test_txt_and_json(completed_job):
    txt = export_transcript(completed_job, "TXT").content
    assert txt.startswith("TRANSCRIPTION: weekly sync.mp3\nProject: general\nDuration: 10:30\n")
    assert "[0:06] Speaker B: Sarah Connor will review the database migration." in txt
    assert "TAGS: " in txt

    data = json.loads(export_transcript(completed_job, "json").content)
    assert data["job_id"] == completed_job.job_id
    assert len(data["speaker_segments"]) == 4


def test_unfinished_job_and_bad_format_are_rejected(db, make_job, completed_job):
    with pytest.raises(ExportError):
        export_transcript(make_job(), "txt")
    with pytest.raises(ExportError):
        export_transcript(completed_job, "docx")


def test_subtitles_need_timed_segments(completed_job, db):
    completed_job.speaker_segments_json = "[]"
    db.commit()
    with pytest.raises(ExportError):
        export_transcript(completed_job, "srt")
    assert "Welcome to the weekly planning meeting." in export_transcript(completed_job, "txt").content


def test_export_endpoint(completed_job):
    r = client.get(f"/transcriptions/{completed_job.job_id}/export", params={"format": "srt"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/x-subrip")
    assert 'filename="weekly sync_subtitles.srt"' in r.headers["content-disposition"]
    assert r.text.startswith("1\n00:00:00,000 --> ")

    assert client.get(f"/transcriptions/{completed_job.job_id}/export", params={"format": "pdf"}).status_code == 400
    assert client.get("/transcriptions/tx_1000_abcdefghi/export").status_code == 404
