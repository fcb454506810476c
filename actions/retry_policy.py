from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any, Optional

from stages import StageStatus
from utils import parse_datetime_maybe, to_iso_utc, utc_now

RETRY_COOLDOWN_DAYS = 30
RETRY_COOLDOWN = timedelta(days=RETRY_COOLDOWN_DAYS)


def cooldown_from_days(days: Any) -> timedelta:
    try:
        n = int(days)
    except (TypeError, ValueError):
        return RETRY_COOLDOWN
    return timedelta(days=max(0, n))


def compute_retry_after(failed_at: datetime, cooldown: timedelta = RETRY_COOLDOWN) -> datetime:
    return failed_at + cooldown


def retry_after_of(state) -> Optional[datetime]:
    if state is None:
        return None
    return parse_datetime_maybe(getattr(state, "retryAfter", None))


def cooldown_active(state, *, now: Optional[datetime] = None) -> bool:
    """True while a FAILED subject is still inside its lockout window."""
    if state is None or str(state.status or "") != StageStatus.FAILED.value:
        return False
    retry_at = retry_after_of(state)
    if retry_at is None:
        return False
    return (now or utc_now()) < retry_at


def retry_eligibility(state, *, now: Optional[datetime] = None) -> dict:
    now_dt = now or utc_now()
    if state is None or str(state.status or "") != StageStatus.FAILED.value:
        return {"canRetry": True, "retryAfter": None, "daysRemaining": 0, "failedAtStage": None}

    retry_at = retry_after_of(state)
    if retry_at is None or now_dt >= retry_at:
        days = 0
    else:
        days = int(math.ceil((retry_at - now_dt).total_seconds() / 86400))
    return {
        "canRetry": days == 0,
        "retryAfter": to_iso_utc(retry_at) if retry_at else None,
        "daysRemaining": days,
        "failedAtStage": state.failedAtStage,
    }
