from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select

from actions.documents import (
    REQUIRED_DOCUMENT_TYPES,
    documents_complete,
    missing_document_types,
    normalize_document_type,
    uploaded_document_types,
)
from actions.helpers import append_audit, parse_int, subject_id_from
from actions.interview import evaluate_round, load_question_key
from actions.retry_policy import RETRY_COOLDOWN, cooldown_active, cooldown_from_days, retry_eligibility
from actions.stage_repo import ensure_stage_state, get_stage_state, serialize_stage_state, set_stage_state
from models import CandidateDocument, IdCard, InterviewRound, OfferLetter, OnboardingProgress
from services.notifications import (
    DOCUMENTS_COMPLETE,
    ID_CARD_GENERATED,
    INTERVIEW_FAILED,
    INTERVIEW_PASSED,
    OFFER_LETTER_ISSUED,
    OFFER_LETTER_SIGNED,
    ONBOARDING_RESET,
    queue_notification,
)
from stages import INTERVIEW_ROUNDS, OfferStatus, RoundStatus, Stage, StageStatus, parse_stage, stage_index
from utils import ApiError, AuthContext, sanitize_filename, to_iso_utc, utc_now

log = logging.getLogger("onboarding")


def stage_allows(state: Optional[OnboardingProgress], target_stage: Any, *, now: Optional[datetime] = None) -> bool:
    if state is None:
        return False
    if cooldown_active(state, now=now):
        return False

    # FAILED counts as index -1, so once its cooldown lapses only PROFILE is reachable.
    current = stage_index(state.stage)
    target = stage_index(target_stage)
    if target < 0:
        return False
    return target == current or target == current + 1


def can_proceed_to_stage(db, subject_id: str, target_stage: Any, *, now: Optional[datetime] = None) -> bool:
    return stage_allows(get_stage_state(db, subject_id), target_stage, now=now)


def _not_started(subject_id: str) -> ApiError:
    return ApiError("NOT_FOUND", "Onboarding not started", details={"subjectId": str(subject_id)})


def _rejected(state: OnboardingProgress, target: Any, message: str = "", *, now: Optional[datetime] = None) -> ApiError:
    target_st = parse_stage(target)
    locked = cooldown_active(state, now=now)
    if not message:
        if locked:
            message = f"Onboarding is locked until {state.retryAfter}"
        else:
            message = f"Cannot proceed to {target_st.value if target_st else target} stage from {state.stage}"
    return ApiError(
        "CONFLICT",
        message,
        details={
            "subjectId": state.subjectId,
            "targetStage": target_st.value if target_st else str(target),
            "currentStage": state.stage,
            "status": state.status,
            "failedAtStage": state.failedAtStage,
            "retryAfter": state.retryAfter,
            "cooldownActive": locked,
        },
    )


def _require_state(db, subject_id: str) -> OnboardingProgress:
    state = get_stage_state(db, subject_id)
    if state is None:
        raise _not_started(subject_id)
    return state


def _require_proceed(state: OnboardingProgress, target: Stage, *, now: datetime) -> None:
    if not stage_allows(state, target, now=now):
        raise _rejected(state, target, now=now)


def _require_at(state: OnboardingProgress, stage: Stage, message: str, *, now: datetime) -> None:
    if state.stage != stage.value:
        raise _rejected(state, stage, message, now=now)


def _advance(
    db,
    state: OnboardingProgress,
    to_stage: Stage,
    status: StageStatus,
    *,
    actor: AuthContext | None,
    now: datetime,
    remark: str = "",
) -> OnboardingProgress:
    from_stage = state.stage
    from_idx = stage_index(from_stage)
    if from_idx < 0 or stage_index(to_stage) != from_idx + 1:
        raise _rejected(state, to_stage, f"Transition {from_stage} -> {to_stage.value} is not a single forward step", now=now)

    new_state = set_stage_state(db, state.subjectId, to_stage, status, now=now)
    append_audit(
        db,
        entityType="ONBOARDING",
        entityId=new_state.subjectId,
        action="STAGE_TRANSITION",
        fromState=from_stage,
        toState=to_stage.value,
        stageTag=to_stage.value.upper(),
        remark=remark,
        actor=actor,
        at=to_iso_utc(now),
    )
    log.info("subject=%s stage %s -> %s", new_state.subjectId, from_stage, to_stage.value)
    return new_state


def _round_dict(r: InterviewRound) -> dict[str, Any]:
    return {
        "roundNumber": r.roundNumber,
        "status": r.status,
        "score": r.score,
        "percentage": r.percentage,
        "completedAt": r.completedAt,
    }


def _document_dict(d: CandidateDocument) -> dict[str, Any]:
    return {
        "id": d.id,
        "documentType": d.documentType,
        "filePath": d.filePath or "",
        "originalName": d.originalName or "",
        "fileSize": d.fileSize,
        "mimeType": d.mimeType or "",
        "uploadedAt": d.uploadedAt or "",
    }


def _offer_dict(o: Optional[OfferLetter]) -> Optional[dict[str, Any]]:
    if o is None:
        return None
    return {
        "id": o.id,
        "status": o.status,
        "uploadedBy": o.uploadedBy or "",
        "filePath": o.filePath or "",
        "originalName": o.originalName or "",
        "signedFilePath": o.signedFilePath or "",
        "signedOriginalName": o.signedOriginalName or "",
        "signedAt": o.signedAt,
        "uploadedAt": o.uploadedAt or "",
    }


def _card_dict(c: Optional[IdCard]) -> Optional[dict[str, Any]]:
    if c is None:
        return None
    return {"id": c.id, "cardNumber": c.cardNumber, "filePath": c.filePath or "", "generatedAt": c.generatedAt or ""}


def _rounds(db, subject_id: str) -> list[InterviewRound]:
    return (
        db.execute(
            select(InterviewRound).where(InterviewRound.subjectId == str(subject_id)).order_by(InterviewRound.roundNumber.asc())
        )
        .scalars()
        .all()
    )


def start_interview(db, subject_id: str, *, actor: AuthContext | None = None, now: Optional[datetime] = None) -> dict[str, Any]:
    now = now or utc_now()
    state = ensure_stage_state(db, subject_id, now=now)
    _require_proceed(state, Stage.INTERVIEW, now=now)

    existing = _rounds(db, subject_id)
    if state.stage == Stage.INTERVIEW.value and existing:
        return {
            "started": False,
            "message": "Interview already in progress",
            "stage": state.stage,
            "status": state.status,
            "rounds": [_round_dict(r) for r in existing],
        }

    now_iso = to_iso_utc(now)
    rounds = [
        InterviewRound(subjectId=str(subject_id), roundNumber=n, status=RoundStatus.PENDING.value, createdAt=now_iso)
        for n in INTERVIEW_ROUNDS
    ]
    db.add_all(rounds)
    db.flush(rounds)

    if state.stage == Stage.INTERVIEW.value:
        state = set_stage_state(db, subject_id, Stage.INTERVIEW, StageStatus.IN_PROGRESS, now=now)
    else:
        state = _advance(db, state, Stage.INTERVIEW, StageStatus.IN_PROGRESS, actor=actor, now=now)

    return {
        "started": True,
        "message": "Interview process started",
        "stage": state.stage,
        "status": state.status,
        "rounds": [_round_dict(r) for r in rounds],
    }


def submit_interview_round(
    db,
    subject_id: str,
    round_number: int,
    answers: list[Any],
    *,
    actor: AuthContext | None = None,
    now: Optional[datetime] = None,
    cooldown: timedelta = RETRY_COOLDOWN,
) -> dict[str, Any]:
    now = now or utc_now()
    if round_number not in INTERVIEW_ROUNDS:
        raise ApiError("BAD_REQUEST", f"roundNumber must be one of {list(INTERVIEW_ROUNDS)}")
    if not isinstance(answers, (list, tuple)):
        raise ApiError("BAD_REQUEST", "answers must be a list")

    state = _require_state(db, subject_id)
    _require_proceed(state, Stage.INTERVIEW, now=now)
    _require_at(state, Stage.INTERVIEW, "Interview is not in progress", now=now)

    rnd = db.execute(
        select(InterviewRound)
        .where(InterviewRound.subjectId == str(subject_id))
        .where(InterviewRound.roundNumber == int(round_number))
    ).scalar_one_or_none()
    if rnd is None:
        raise ApiError("NOT_FOUND", f"Interview round {round_number} not found")
    if rnd.status != RoundStatus.PENDING.value:
        raise ApiError(
            "CONFLICT",
            f"Interview round {round_number} already {rnd.status}",
            details={"roundNumber": round_number, "roundStatus": rnd.status},
        )

    key = load_question_key(db, round_number)
    if not key:
        raise ApiError("NOT_FOUND", f"No interview questions configured for round {round_number}")
    ev = evaluate_round(key, answers)

    rnd.status = RoundStatus.PASSED.value if ev.passed else RoundStatus.FAILED.value
    rnd.score = ev.score
    rnd.percentage = ev.percentage
    rnd.completedAt = to_iso_utc(now)
    db.flush([rnd])

    result: dict[str, Any] = {
        "roundNumber": round_number,
        "passed": ev.passed,
        "score": ev.score,
        "totalPoints": ev.totalPoints,
        "percentage": ev.percentage,
    }

    if not ev.passed:
        from_stage = state.stage
        reason = f"Failed interview round {round_number}"
        state = set_stage_state(
            db,
            subject_id,
            Stage.FAILED,
            StageStatus.FAILED,
            failed_reason=reason,
            failed_at_stage=Stage.INTERVIEW,
            cooldown=cooldown,
            now=now,
        )
        append_audit(
            db,
            entityType="ONBOARDING",
            entityId=str(subject_id),
            action="STAGE_TRANSITION",
            fromState=from_stage,
            toState=state.stage,
            stageTag="INTERVIEW_FAILED",
            remark=reason,
            actor=actor,
            at=to_iso_utc(now),
            meta={"roundNumber": round_number, "score": ev.score, "percentage": ev.percentage},
        )
        queue_notification(
            db,
            event=INTERVIEW_FAILED,
            subject_id=subject_id,
            payload={"roundNumber": round_number, "retryAfter": state.retryAfter},
        )
        log.info("subject=%s failed interview round=%s retry_after=%s", subject_id, round_number, state.retryAfter)
        result.update(
            {
                "result": "INTERVIEW_FAILED",
                "message": "Interview failed",
                "stage": state.stage,
                "status": state.status,
                "failedAtStage": state.failedAtStage,
                "retryAfter": state.retryAfter,
            }
        )
        return result

    passed_count = int(
        db.execute(
            select(func.count())
            .select_from(InterviewRound)
            .where(InterviewRound.subjectId == str(subject_id))
            .where(InterviewRound.status == RoundStatus.PASSED.value)
        ).scalar_one()
    )
    result["roundsPassed"] = passed_count

    if passed_count >= len(INTERVIEW_ROUNDS):
        state = _advance(
            db, state, Stage.DOCUMENTS, StageStatus.IN_PROGRESS, actor=actor, now=now, remark="All interview rounds passed"
        )
        queue_notification(db, event=INTERVIEW_PASSED, subject_id=subject_id)
        result.update({"result": "INTERVIEW_PASSED", "message": "All interview rounds completed successfully"})
        # Documents may already be complete from uploads made while interviewing.
        if documents_complete(uploaded_document_types(db, subject_id)):
            state = _advance(
                db, state, Stage.OFFER, StageStatus.IN_PROGRESS, actor=actor, now=now, remark="Required documents uploaded"
            )
            queue_notification(db, event=DOCUMENTS_COMPLETE, subject_id=subject_id)
    else:
        result.update({"result": "ROUND_PASSED", "message": f"Round {round_number} completed"})

    result.update({"stage": state.stage, "status": state.status})
    return result


def upload_document(
    db, subject_id: str, document: dict[str, Any], *, actor: AuthContext | None = None, now: Optional[datetime] = None
) -> dict[str, Any]:
    now = now or utc_now()
    document = document or {}
    doc_type = normalize_document_type(document.get("type") or document.get("documentType"))
    if doc_type not in REQUIRED_DOCUMENT_TYPES:
        raise ApiError(
            "BAD_REQUEST",
            f"Unknown document type: {doc_type or '(empty)'}",
            details={"allowed": sorted(REQUIRED_DOCUMENT_TYPES)},
        )
    file_path = str(document.get("filePath") or "").strip()
    if not file_path:
        raise ApiError("BAD_REQUEST", "Missing filePath")

    file_size = document.get("fileSize")
    if file_size in (None, ""):
        file_size = None
    else:
        file_size = parse_int(file_size, label="fileSize")

    state = _require_state(db, subject_id)
    _require_proceed(state, Stage.DOCUMENTS, now=now)

    row = CandidateDocument(
        subjectId=str(subject_id),
        documentType=doc_type,
        filePath=file_path,
        originalName=sanitize_filename(document.get("originalName") or file_path.rsplit("/", 1)[-1]),
        fileSize=file_size,
        mimeType=str(document.get("mimeType") or ""),
        uploadedAt=to_iso_utc(now),
        uploadedBy=str(actor.userId if actor else "SYSTEM"),
    )
    db.add(row)
    db.flush([row])

    types = uploaded_document_types(db, subject_id)
    all_uploaded = documents_complete(types)

    advanced = False
    # While interviewing the upload is stored; the last round submission re-checks the gate.
    if all_uploaded and state.stage == Stage.DOCUMENTS.value:
        state = _advance(db, state, Stage.OFFER, StageStatus.IN_PROGRESS, actor=actor, now=now, remark="Required documents uploaded")
        queue_notification(db, event=DOCUMENTS_COMPLETE, subject_id=subject_id)
        advanced = True

    return {
        "documentId": row.id,
        "documentType": doc_type,
        "allUploaded": all_uploaded,
        "missing": missing_document_types(types),
        "advanced": advanced,
        "stage": state.stage,
    }


def upload_offer_letter(
    db,
    admin_id: str,
    subject_id: str,
    file_data: dict[str, Any],
    *,
    actor: AuthContext | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utc_now()
    file_data = file_data or {}
    file_path = str(file_data.get("filePath") or "").strip()
    if not file_path:
        raise ApiError("BAD_REQUEST", "Missing filePath")

    state = _require_state(db, subject_id)
    _require_proceed(state, Stage.OFFER, now=now)
    _require_at(state, Stage.OFFER, "Offer letter can only be issued once all documents are uploaded", now=now)

    letter = OfferLetter(
        subjectId=str(subject_id),
        uploadedBy=str(admin_id or ""),
        filePath=file_path,
        originalName=sanitize_filename(file_data.get("originalName") or file_path.rsplit("/", 1)[-1]),
        status=OfferStatus.PENDING.value,
        uploadedAt=to_iso_utc(now),
    )
    db.add(letter)
    db.flush([letter])

    # The pipeline moves on when the letter is issued, not when it is signed.
    state = _advance(db, state, Stage.ID_CARD, StageStatus.IN_PROGRESS, actor=actor, now=now, remark="Offer letter issued")
    queue_notification(db, event=OFFER_LETTER_ISSUED, subject_id=subject_id, payload={"offerLetterId": letter.id})
    return {"offerLetterId": letter.id, "status": letter.status, "stage": state.stage}


def sign_offer_letter(
    db,
    subject_id: str,
    signed_file_data: dict[str, Any],
    *,
    actor: AuthContext | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utc_now()
    signed_file_data = signed_file_data or {}
    file_path = str(signed_file_data.get("filePath") or "").strip()
    if not file_path:
        raise ApiError("BAD_REQUEST", "Missing filePath")

    _require_state(db, subject_id)
    letter = (
        db.execute(
            select(OfferLetter)
            .where(OfferLetter.subjectId == str(subject_id))
            .where(OfferLetter.status == OfferStatus.PENDING.value)
            .order_by(OfferLetter.uploadedAt.desc(), OfferLetter.id.desc())
        )
        .scalars()
        .first()
    )
    if letter is None:
        raise ApiError("NOT_FOUND", "No pending offer letter")

    letter.status = OfferStatus.SIGNED.value
    letter.signedFilePath = file_path
    letter.signedOriginalName = sanitize_filename(signed_file_data.get("originalName") or file_path.rsplit("/", 1)[-1])
    letter.signedAt = to_iso_utc(now)

    append_audit(
        db,
        entityType="OFFER_LETTER",
        entityId=str(letter.id),
        action="OFFER_LETTER_SIGN",
        fromState=OfferStatus.PENDING.value,
        toState=OfferStatus.SIGNED.value,
        stageTag="OFFER_SIGNED",
        actor=actor,
        at=letter.signedAt,
        meta={"subjectId": str(subject_id)},
    )
    queue_notification(db, event=OFFER_LETTER_SIGNED, subject_id=subject_id, payload={"offerLetterId": letter.id})
    return {"offerLetterId": letter.id, "status": letter.status, "signedAt": letter.signedAt}


def make_card_number(subject_id: str, now: datetime) -> str:
    # Fixed-width millisecond stamp keeps the subject suffix unambiguous.
    return f"HRC{int(now.timestamp() * 1000):013d}{subject_id}"


def generate_id_card(
    db,
    subject_id: str,
    card_data: dict[str, Any] | None = None,
    *,
    actor: AuthContext | None = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utc_now()
    card_data = card_data or {}

    state = _require_state(db, subject_id)
    _require_proceed(state, Stage.ID_CARD, now=now)
    _require_at(state, Stage.ID_CARD, "ID card can only be generated after the offer letter is issued", now=now)

    card = IdCard(
        subjectId=str(subject_id),
        cardNumber=make_card_number(str(subject_id), now),
        filePath=str(card_data.get("filePath") or "").strip(),
        generatedAt=to_iso_utc(now),
        generatedBy=str(actor.userId if actor else "SYSTEM"),
    )
    db.add(card)
    db.flush([card])

    state = _advance(db, state, Stage.COMPLETED, StageStatus.COMPLETED, actor=actor, now=now, remark="ID card generated")
    queue_notification(db, event=ID_CARD_GENERATED, subject_id=subject_id, payload={"cardNumber": card.cardNumber})
    return {"idCardId": card.id, "cardNumber": card.cardNumber, "stage": state.stage, "completedAt": state.completedAt}


def get_complete_onboarding_status(db, subject_id: str) -> Optional[dict[str, Any]]:
    state = get_stage_state(db, subject_id)
    if state is None:
        return None

    sid = str(subject_id)
    documents = (
        db.execute(
            select(CandidateDocument)
            .where(CandidateDocument.subjectId == sid)
            .order_by(CandidateDocument.uploadedAt.desc(), CandidateDocument.id.desc())
        )
        .scalars()
        .all()
    )
    offer = (
        db.execute(
            select(OfferLetter).where(OfferLetter.subjectId == sid).order_by(OfferLetter.uploadedAt.desc(), OfferLetter.id.desc())
        )
        .scalars()
        .first()
    )
    card = (
        db.execute(select(IdCard).where(IdCard.subjectId == sid).order_by(IdCard.generatedAt.desc(), IdCard.id.desc()))
        .scalars()
        .first()
    )

    out = serialize_stage_state(state) or {}
    out.update(
        {
            "interviewRounds": [_round_dict(r) for r in _rounds(db, sid)],
            "documents": [_document_dict(d) for d in documents],
            "missingDocuments": missing_document_types(d.documentType for d in documents),
            "offerLetter": _offer_dict(offer),
            "idCard": _card_dict(card),
        }
    )
    return out


def reset_onboarding_for_retry(
    db, subject_id: str, *, actor: AuthContext | None = None, now: Optional[datetime] = None
) -> dict[str, Any]:
    """Administrative restart: wipes stage artifacts and ignores any active cooldown."""
    now = now or utc_now()
    sid = str(subject_id)
    previous = get_stage_state(db, sid)
    from_stage = previous.stage if previous else ""

    deleted = {}
    for label, model in (
        ("interviewRounds", InterviewRound),
        ("documents", CandidateDocument),
        ("offerLetters", OfferLetter),
        ("idCards", IdCard),
    ):
        res = db.execute(delete(model).where(model.subjectId == sid))
        deleted[label] = int(res.rowcount or 0)

    state = set_stage_state(db, sid, Stage.PROFILE, StageStatus.IN_PROGRESS, now=now)
    append_audit(
        db,
        entityType="ONBOARDING",
        entityId=sid,
        action="ONBOARDING_RESET",
        fromState=from_stage,
        toState=state.stage,
        stageTag="RESET",
        actor=actor,
        at=to_iso_utc(now),
        meta={"deleted": deleted},
    )
    queue_notification(db, event=ONBOARDING_RESET, subject_id=sid)
    log.info("subject=%s onboarding reset from stage=%s", sid, from_stage or "(none)")
    return {"stage": state.stage, "status": state.status, "deleted": deleted}


def get_retry_eligibility(db, subject_id: str, *, now: Optional[datetime] = None) -> dict[str, Any]:
    state = _require_state(db, subject_id)
    return retry_eligibility(state, now=now)


def _cooldown(cfg) -> timedelta:
    return cooldown_from_days(getattr(cfg, "RETRY_COOLDOWN_DAYS", None))


def _payload(data, key: str) -> dict[str, Any]:
    nested = (data or {}).get(key)
    if isinstance(nested, dict):
        return nested
    return dict(data or {})


def onboarding_init(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    return serialize_stage_state(ensure_stage_state(db, sid))


def onboarding_can_proceed(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    target = parse_stage((data or {}).get("targetStage"))
    if target is None:
        raise ApiError("BAD_REQUEST", "Invalid targetStage")
    state = get_stage_state(db, sid)
    return {
        "subjectId": sid,
        "targetStage": target.value,
        "canProceed": stage_allows(state, target),
        "state": serialize_stage_state(state),
    }


def onboarding_status_get(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    out = get_complete_onboarding_status(db, sid)
    if out is None:
        raise _not_started(sid)
    return out


def onboarding_retry_eligibility(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    out = get_retry_eligibility(db, sid)
    out["subjectId"] = sid
    return out


def interview_start(data, auth: AuthContext | None, db, cfg):
    return start_interview(db, subject_id_from(data, auth), actor=auth)


def interview_round_submit(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    round_number = parse_int((data or {}).get("roundNumber"), label="roundNumber")
    answers = (data or {}).get("answers")
    return submit_interview_round(db, sid, round_number, answers, actor=auth, cooldown=_cooldown(cfg))


def document_upload(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    return upload_document(db, sid, _payload(data, "document"), actor=auth)


def offer_letter_upload(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    admin_id = str(auth.userId if auth else "")
    return upload_offer_letter(db, admin_id, sid, _payload(data, "file"), actor=auth)


def offer_letter_sign(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    return sign_offer_letter(db, sid, _payload(data, "file"), actor=auth)


def id_card_generate(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    return generate_id_card(db, sid, _payload(data, "card"), actor=auth)


def onboarding_reset(data, auth: AuthContext | None, db, cfg):
    sid = subject_id_from(data, auth)
    return reset_onboarding_for_retry(db, sid, actor=auth)
