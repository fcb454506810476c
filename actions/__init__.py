from __future__ import annotations

from typing import Any, Callable

from actions.interview import interview_questions_list, interview_questions_upsert
from actions.onboarding import (
    document_upload,
    id_card_generate,
    interview_round_submit,
    interview_start,
    offer_letter_sign,
    offer_letter_upload,
    onboarding_can_proceed,
    onboarding_init,
    onboarding_reset,
    onboarding_retry_eligibility,
    onboarding_status_get,
)
from actions.payroll import payroll_calculate
from utils import ApiError

Handler = Callable[[dict, Any, Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    "ONBOARDING_INIT": onboarding_init,
    "ONBOARDING_CAN_PROCEED": onboarding_can_proceed,
    "ONBOARDING_STATUS_GET": onboarding_status_get,
    "ONBOARDING_RETRY_ELIGIBILITY": onboarding_retry_eligibility,
    "ONBOARDING_RESET": onboarding_reset,
    "INTERVIEW_START": interview_start,
    "INTERVIEW_ROUND_SUBMIT": interview_round_submit,
    "INTERVIEW_QUESTIONS_LIST": interview_questions_list,
    "INTERVIEW_QUESTIONS_UPSERT": interview_questions_upsert,
    "DOCUMENT_UPLOAD": document_upload,
    "OFFER_LETTER_UPLOAD": offer_letter_upload,
    "OFFER_LETTER_SIGN": offer_letter_sign,
    "ID_CARD_GENERATE": id_card_generate,
    "PAYROLL_CALCULATE": payroll_calculate,
}


def dispatch(action: str, data: dict, auth, db, cfg):
    handler = ACTION_HANDLERS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    return handler(data or {}, auth, db, cfg)
