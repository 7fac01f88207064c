from __future__ import annotations

import logging

from scribe_api.worker import enrichment_tasks

log = logging.getLogger(__name__)

ENRICHMENT_TASKS = (
    enrichment_tasks.store_knowledge,
    enrichment_tasks.index_passages,
    enrichment_tasks.notify,
)


def fan_out(job_id: str) -> int:
    """
    Dispatch every enrichment task for a completed job. A dispatch failure is
    logged and the remaining tasks still go out. Returns how many dispatched.
    """
    sent = 0
    for task in ENRICHMENT_TASKS:
        try:
            task.apply_async(kwargs={"job_id": job_id})
            sent += 1
        except Exception:
            log.exception("[%s] could not dispatch %s", job_id, task.name)
    return sent
