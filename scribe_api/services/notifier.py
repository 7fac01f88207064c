from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from scribe_api.core.config import settings
from scribe_api.models.transcription_job import TranscriptionJob
from scribe_api.services.analysis import is_urgent

log = logging.getLogger(__name__)

TRANSCRIPTION_COMPLETE = "transcription_complete"
URGENT_NOTIFICATION = "urgent_notification"


class NotifierError(Exception):
    pass


def send_event(event_type: str, owner: str, data: dict[str, Any], priority: str = "medium") -> bool:
    """
    POST one event to the configured webhook. Returns False (and sends
    nothing) when no webhook is configured.
    """
    url = settings.webhook_url
    if not url:
        log.info("webhook not configured; skipping %s", event_type)
        return False

    payload = {
        "event_type": event_type,
        "owner": owner,
        "priority": priority,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }
    headers = {"Content-Type": "application/json"}
    if settings.webhook_secret:
        headers["X-Webhook-Secret"] = settings.webhook_secret

    try:
        r = httpx.post(url, json=payload, headers=headers, timeout=settings.http_timeout_seconds)
        r.raise_for_status()
    except httpx.HTTPError as e:
        raise NotifierError(f"{event_type} webhook failed: {e}") from e
    return True


def notify_completion(job: TranscriptionJob) -> dict[str, bool]:
    text = job.text or ""
    tags = job.tags
    urgent = is_urgent(text, tags)

    sent = send_event(
        TRANSCRIPTION_COMPLETE,
        job.owner,
        {
            "job_id": job.job_id,
            "record_id": job.id,
            "filename": job.filename,
            "preview": text[:300],
            "tags": tags,
            "category": job.category,
            "action_items": job.action_items,
            "audio_duration_seconds": job.audio_duration_seconds,
            "has_urgent_tag": urgent,
        },
        priority="urgent" if urgent else "low",
    )

    urgent_sent = False
    if urgent:
        items = ", ".join(job.action_items[:3]) or job.filename
        urgent_sent = send_event(
            URGENT_NOTIFICATION,
            job.owner,
            {
                "title": "Urgent Transcription Detected",
                "message": f"Transcription contains urgent items: {items}",
                "source": "audio_transcription",
                "job_id": job.job_id,
            },
            priority="urgent",
        )
    return {"complete_sent": sent, "urgent": urgent, "urgent_sent": urgent_sent}
