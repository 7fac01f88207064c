from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from scribe_api.models.transcription_job import TranscriptionJob

EXPORT_FORMATS = ("txt", "json", "srt", "vtt")

MEDIA_TYPES = {
    "txt": "text/plain; charset=utf-8",
    "json": "application/json",
    "srt": "application/x-subrip",
    "vtt": "text/vtt; charset=utf-8",
}

_RULE = "=" * 80


class ExportError(Exception):
    pass


@dataclass
class ExportedTranscript:
    filename: str
    media_type: str
    content: str


def format_timestamp(ms: int | float, sep: str = ",") -> str:
    """HH:MM:SS<sep>mmm. SRT uses a comma, WebVTT a dot."""
    ms = max(0, int(ms or 0))
    total_s, millis = divmod(ms, 1000)
    hours, rem = divmod(total_s, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}{sep}{millis:03d}"


def _clock(ms: int | float) -> str:
    total_s = max(0, int(ms or 0)) // 1000
    return f"{total_s // 60}:{total_s % 60:02d}"


def _cues(segments: list[dict[str, Any]]) -> list[tuple[int, int, str]]:
    out = []
    for seg in segments or []:
        txt = str(seg.get("text") or "").strip()
        if not txt:
            continue
        start = int(seg.get("start_ms") or 0)
        end = max(start, int(seg.get("end_ms") or start))
        speaker = seg.get("speaker")
        out.append((start, end, f"Speaker {speaker}: {txt}" if speaker else txt))
    return out


def to_txt(job: TranscriptionJob) -> str:
    duration = int(job.audio_duration_seconds or 0)
    lines = [
        f"TRANSCRIPTION: {job.filename}",
        f"Project: {job.project or 'general'}",
        f"Duration: {duration // 60}:{duration % 60:02d}",
        f"Date: {job.created_at.isoformat() if job.created_at else ''}",
        "",
        _RULE,
        "",
    ]

    cues = _cues(job.speaker_segments)
    if cues:
        for start, _end, text in cues:
            lines.append(f"[{_clock(start)}] {text}")
            lines.append("")
    else:
        lines.append(job.text or "")

    if job.tags:
        lines += ["", _RULE, f"TAGS: {', '.join(job.tags)}"]
    if job.action_items:
        lines += ["", "ACTION ITEMS:"]
        lines += [f"{i}. {item}" for i, item in enumerate(job.action_items, 1)]
    return "\n".join(lines).rstrip() + "\n"


def to_json(job: TranscriptionJob) -> str:
    return json.dumps(
        {
            "job_id": job.job_id,
            "filename": job.filename,
            "project": job.project,
            "audio_duration_seconds": job.audio_duration_seconds,
            "created_at": job.created_at.isoformat() if job.created_at else None,
            "text": job.text or "",
            "speaker_segments": job.speaker_segments,
            "tags": job.tags,
            "action_items": job.action_items,
            "topics": job.topics,
            "sentiment": job.sentiment,
            "category": job.category,
        },
        ensure_ascii=False,
        indent=2,
    )


def to_srt(job: TranscriptionJob) -> str:
    blocks = [
        f"{i}\n{format_timestamp(start)} --> {format_timestamp(end)}\n{text}\n"
        for i, (start, end, text) in enumerate(_cues(job.speaker_segments), 1)
    ]
    return "\n".join(blocks)


def to_vtt(job: TranscriptionJob) -> str:
    blocks = ["WEBVTT\n"]
    blocks += [
        f"{i}\n{format_timestamp(start, '.')} --> {format_timestamp(end, '.')}\n{text}\n"
        for i, (start, end, text) in enumerate(_cues(job.speaker_segments), 1)
    ]
    return "\n".join(blocks)


_FORMATTERS = {"txt": to_txt, "json": to_json, "srt": to_srt, "vtt": to_vtt}

_SUFFIXES = {"txt": "transcript", "json": "data", "srt": "subtitles", "vtt": "subtitles"}


def export_transcript(job: TranscriptionJob, fmt: str) -> ExportedTranscript:
    """
    Render a completed job. Subtitle formats need timed segments; a job
    without them raises ExportError.
    """
    fmt = (fmt or "").strip().lower()
    if fmt not in _FORMATTERS:
        raise ExportError(f"Unsupported export format: {fmt or 'none'}. Supported: {', '.join(EXPORT_FORMATS)}")
    if job.status != "completed":
        raise ExportError(f"Transcription is not completed (status: {job.status})")
    if fmt in ("srt", "vtt") and not _cues(job.speaker_segments):
        raise ExportError("No timed segments available for subtitles")

    base = Path(job.filename or "audio").stem or "audio"
    return ExportedTranscript(
        filename=f"{base}_{_SUFFIXES[fmt]}.{fmt}",
        media_type=MEDIA_TYPES[fmt],
        content=_FORMATTERS[fmt](job),
    )
