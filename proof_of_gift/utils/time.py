"""Clock helpers for rate freshness and redemption timestamps."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def seconds_since(moment: datetime, now: Optional[datetime] = None) -> float:
    """Age of ``moment`` in seconds. Naive datetimes are read as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return ((now or utc_now()) - moment).total_seconds()
