"""
Onboarding stage and status vocabulary.

Values are the lowercase strings stored in `onboarding_progress` and returned
to the portal frontend, so members compare equal to plain strings.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class Stage(str, Enum):
    PROFILE = "profile"
    INTERVIEW = "interview"
    DOCUMENTS = "documents"
    OFFER = "offer"
    ID_CARD = "id_card"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class RoundStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class OfferStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"


# Forward order only; FAILED sits outside it.
STAGE_ORDER: tuple[Stage, ...] = (
    Stage.PROFILE,
    Stage.INTERVIEW,
    Stage.DOCUMENTS,
    Stage.OFFER,
    Stage.ID_CARD,
    Stage.COMPLETED,
)

INTERVIEW_ROUNDS: tuple[int, ...] = (1, 2, 3)


def parse_stage(value: Any) -> Optional[Stage]:
    if isinstance(value, Stage):
        return value
    s = str(value or "").strip().lower()
    try:
        return Stage(s)
    except ValueError:
        return None


def stage_index(stage: Any) -> int:
    """Position in STAGE_ORDER, or -1 for FAILED / unknown values."""
    st = parse_stage(stage)
    if st is None or st not in STAGE_ORDER:
        return -1
    return STAGE_ORDER.index(st)
