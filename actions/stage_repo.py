from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select

from actions.retry_policy import RETRY_COOLDOWN, compute_retry_after
from models import OnboardingProgress
from stages import Stage, StageStatus
from utils import ApiError, to_iso_utc, utc_now

_UPDATABLE = (
    "stage",
    "status",
    "failedAtStage",
    "failedReason",
    "failedAt",
    "retryAfter",
    "completedAt",
    "updatedAt",
)


def _dialect_insert(db):
    name = db.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif name in {"mysql", "mariadb"}:
        from sqlalchemy.dialects.mysql import insert
    else:
        raise ApiError("INTERNAL", f"Unsupported database dialect for onboarding upsert: {name}")
    return name, insert


def get_stage_state(db, subject_id: str) -> Optional[OnboardingProgress]:
    return db.execute(
        select(OnboardingProgress)
        .where(OnboardingProgress.subjectId == str(subject_id))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def ensure_stage_state(db, subject_id: str, *, now: Optional[datetime] = None) -> OnboardingProgress:
    """Insert the initial (profile, pending) row unless the subject already has one."""
    now_iso = to_iso_utc(now or utc_now())
    values = {
        "subjectId": str(subject_id),
        "stage": Stage.PROFILE.value,
        "status": StageStatus.PENDING.value,
        "createdAt": now_iso,
        "updatedAt": now_iso,
    }
    name, insert = _dialect_insert(db)
    stmt = insert(OnboardingProgress).values(**values)
    if name in {"mysql", "mariadb"}:
        stmt = stmt.prefix_with("IGNORE")
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=[OnboardingProgress.subjectId])
    db.execute(stmt)
    return get_stage_state(db, subject_id)


def set_stage_state(
    db,
    subject_id: str,
    stage: Stage,
    status: StageStatus,
    *,
    failed_reason: Optional[str] = None,
    failed_at_stage: Optional[Stage] = None,
    cooldown: timedelta = RETRY_COOLDOWN,
    now: Optional[datetime] = None,
) -> OnboardingProgress:
    """
    Atomic upsert of the subject's StageState.

    status=failed stamps failedAt and retryAfter (failedAt + cooldown); any other
    status clears the failure fields. stage=completed keeps an existing
    completedAt, other stages clear it.
    """
    stage = Stage(stage)
    status = StageStatus(status)
    now_dt = now or utc_now()
    now_iso = to_iso_utc(now_dt)

    failed = status == StageStatus.FAILED
    values: dict[str, Any] = {
        "subjectId": str(subject_id),
        "stage": stage.value,
        "status": status.value,
        "failedAtStage": Stage(failed_at_stage).value if failed and failed_at_stage else None,
        "failedReason": str(failed_reason) if failed and failed_reason else None,
        "failedAt": now_iso if failed else None,
        "retryAfter": to_iso_utc(compute_retry_after(now_dt, cooldown)) if failed else None,
        "completedAt": now_iso if stage == Stage.COMPLETED else None,
        "createdAt": now_iso,
        "updatedAt": now_iso,
    }

    name, insert = _dialect_insert(db)
    stmt = insert(OnboardingProgress).values(**values)
    if name in {"mysql", "mariadb"}:
        incoming = stmt.inserted
    else:
        incoming = stmt.excluded

    updates = {col: incoming[col] for col in _UPDATABLE}
    if stage == Stage.COMPLETED:
        updates["completedAt"] = func.coalesce(OnboardingProgress.completedAt, incoming["completedAt"])

    if name in {"mysql", "mariadb"}:
        stmt = stmt.on_duplicate_key_update(**updates)
    else:
        stmt = stmt.on_conflict_do_update(index_elements=[OnboardingProgress.subjectId], set_=updates)
    db.execute(stmt)

    return get_stage_state(db, subject_id)


def serialize_stage_state(state: Optional[OnboardingProgress]) -> Optional[dict[str, Any]]:
    if state is None:
        return None
    return {
        "subjectId": state.subjectId,
        "currentStage": state.stage,
        "status": state.status,
        "failedAtStage": state.failedAtStage,
        "failedReason": state.failedReason,
        "failedAt": state.failedAt,
        "retryAfter": state.retryAfter,
        "completedAt": state.completedAt,
        "updatedAt": state.updatedAt,
    }
