from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from scribe_api.core.config import MB, settings
from scribe_api.services import ledger


@dataclass
class BudgetDecision:
    allowed: bool
    reason: str | None
    used_hours: float
    used_cost: float
    estimated_hours: float
    estimated_cost: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def estimate_hours(file_size_bytes: int) -> float:
    """Rough audio length from file size (compressed speech is ~30 MB/hour)."""
    if file_size_bytes <= 0:
        return 0.0
    return (file_size_bytes / MB) / settings.mb_per_audio_hour


def start_of_day_utc(now: datetime | None = None) -> datetime:
    n = now or datetime.now(timezone.utc)
    if n.tzinfo is None:
        n = n.replace(tzinfo=timezone.utc)
    n = n.astimezone(timezone.utc)
    return n.replace(hour=0, minute=0, second=0, microsecond=0)


def _used_hours(db: Session, owner: str, now: datetime | None) -> float:
    return ledger.daily_usage_seconds(db, owner, start_of_day_utc(now)) / 3600.0


def check_budget(
    db: Session,
    owner: str,
    estimated_hours: float,
    now: datetime | None = None,
) -> BudgetDecision:
    """
    Read-only. The window is recomputed from the ledger on every call, so a
    decision is never cached across submissions.
    """
    used_hours = _used_hours(db, owner, now)
    rate = settings.cost_per_audio_hour
    used_cost = used_hours * rate
    est_hours = max(0.0, float(estimated_hours or 0.0))
    est_cost = est_hours * rate

    reason: str | None = None
    if used_hours + est_hours > settings.daily_hour_limit:
        reason = (
            f"Daily limit exceeded. You've used {used_hours:.1f}h today "
            f"(limit: {settings.daily_hour_limit:g}h). This file would add {est_hours:.1f}h."
        )
    elif used_cost + est_cost > settings.daily_cost_limit:
        reason = (
            f"Daily cost limit exceeded. You've spent ${used_cost:.2f} today "
            f"(limit: ${settings.daily_cost_limit:.2f}). This file would add ${est_cost:.2f}."
        )

    return BudgetDecision(
        allowed=reason is None,
        reason=reason,
        used_hours=round(used_hours, 4),
        used_cost=round(used_cost, 4),
        estimated_hours=round(est_hours, 4),
        estimated_cost=round(est_cost, 4),
    )


def usage_summary(db: Session, owner: str, now: datetime | None = None) -> dict[str, Any]:
    used_hours = _used_hours(db, owner, now)
    used_cost = used_hours * settings.cost_per_audio_hour
    return {
        "owner": owner,
        "used_hours": round(used_hours, 4),
        "used_cost": round(used_cost, 4),
        "remaining_hours": round(max(0.0, settings.daily_hour_limit - used_hours), 4),
        "remaining_cost": round(max(0.0, settings.daily_cost_limit - used_cost), 4),
        "daily_hour_limit": settings.daily_hour_limit,
        "daily_cost_limit": settings.daily_cost_limit,
        "cost_per_audio_hour": settings.cost_per_audio_hour,
    }
