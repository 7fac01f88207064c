from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from scribe_api.core.config import settings
from scribe_api.models.knowledge_document import KnowledgeDocument
from scribe_api.models.transcript_passage import TranscriptPassage
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services import embeddings

log = logging.getLogger(__name__)

SOURCE_TYPE = "audio_transcription"


def segments_to_passages(
    segments: list[dict[str, Any]],
    *,
    max_seconds: float | None = None,
    max_chars: int | None = None,
) -> list[dict[str, Any]]:
    """
    Group speaker segments into passages:
      {idx, start_ms, end_ms, speaker, text}

    A passage closes when the speaker changes or when adding the next segment
    would push it past max_seconds or max_chars.
    """
    max_ms = int((max_seconds or settings.passage_max_seconds) * 1000)
    limit = int(max_chars or settings.passage_max_chars)

    passages: list[dict[str, Any]] = []
    buf: list[str] = []
    start: int | None = None
    end = 0
    speaker: str | None = None

    def flush() -> None:
        nonlocal buf, start, end, speaker
        text = " ".join(buf).strip()
        if text:
            passages.append(
                {"idx": len(passages), "start_ms": start or 0, "end_ms": end, "speaker": speaker, "text": text}
            )
        buf, start, end, speaker = [], None, 0, None

    for seg in segments or []:
        txt = str(seg.get("text") or "").strip()
        if not txt:
            continue
        s_start = int(seg.get("start_ms") or 0)
        s_end = max(s_start, int(seg.get("end_ms") or s_start))
        s_speaker = seg.get("speaker")

        if buf:
            too_long = (s_end - (start or 0)) > max_ms
            too_big = len(" ".join(buf)) + 1 + len(txt) > limit
            if s_speaker != speaker or too_long or too_big:
                flush()

        if start is None:
            start = s_start
            speaker = s_speaker
        buf.append(txt)
        end = max(end, s_end)

    flush()
    return passages


def text_to_passages(text: str, *, max_chars: int | None = None) -> list[dict[str, Any]]:
    """Fallback for transcripts without timed segments: split on sentence ends."""
    limit = int(max_chars or settings.passage_max_chars)
    passages: list[dict[str, Any]] = []
    buf = ""
    for sentence in (text or "").replace("\n", " ").split(". "):
        s = sentence.strip()
        if not s:
            continue
        if buf and len(buf) + 2 + len(s) > limit:
            passages.append({"idx": len(passages), "start_ms": 0, "end_ms": 0, "speaker": None, "text": buf})
            buf = ""
        buf = f"{buf}. {s}" if buf else s
    if buf:
        passages.append({"idx": len(passages), "start_ms": 0, "end_ms": 0, "speaker": None, "text": buf})
    return passages


def store_knowledge_document(
    db: Session,
    job: TranscriptionJob,
    model_name: str | None = None,
) -> KnowledgeDocument:
    """
    Idempotent per job: an existing document for the same source is replaced.
    """
    model = (model_name or embeddings.DEFAULT_EMBED_MODEL).strip()
    content = (job.text or "")[: settings.knowledge_max_chars]
    if not content.strip():
        raise ValueError(f"job {job.job_id} has no transcript text")

    vec = embeddings.embed_texts([content], model_name=model)[0]

    db.query(KnowledgeDocument).filter(
        KnowledgeDocument.source_type == SOURCE_TYPE,
        KnowledgeDocument.source_id == job.job_id,
    ).delete(synchronize_session=False)

    doc = KnowledgeDocument(
        owner=job.owner,
        source_type=SOURCE_TYPE,
        source_id=job.job_id,
        title=f"Audio: {job.filename}",
        content=content,
        category=job.category or "general",
        importance=job.importance_score,
        tags_json=json.dumps(job.tags, ensure_ascii=False),
        metadata_json=json.dumps(
            {
                "project": job.project,
                "backend": job.backend,
                "audio_duration_seconds": job.audio_duration_seconds,
                "topics": job.topics,
                "action_items": job.action_items,
                "sentiment": job.sentiment,
            },
            ensure_ascii=False,
        ),
        model=model,
        embedding=vec,
    )
    db.add(doc)
    db.commit()
    db.refresh(doc)
    return doc


def index_passages(db: Session, job: TranscriptionJob, model_name: str | None = None) -> int:
    """
    Replace the job's passages for this model. Returns how many were written.
    """
    model = (model_name or embeddings.DEFAULT_EMBED_MODEL).strip()
    passages = segments_to_passages(job.speaker_segments) or text_to_passages(job.text or "")
    if not passages:
        return 0

    vecs = embeddings.embed_texts([p["text"] for p in passages], model_name=model)

    db.query(TranscriptPassage).filter(
        TranscriptPassage.job_id == job.job_id,
        TranscriptPassage.model == model,
    ).delete(synchronize_session=False)
    for p, v in zip(passages, vecs):
        db.add(
            TranscriptPassage(
                job_id=job.job_id,
                idx=int(p["idx"]),
                start_ms=int(p["start_ms"]),
                end_ms=int(p["end_ms"]),
                speaker=p["speaker"],
                text=p["text"],
                model=model,
                embedding=v,
            )
        )
    db.commit()
    log.info("[%s] indexed %s passages (model=%s)", job.job_id, len(passages), model)
    return len(passages)
