from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import delete, select

from actions.helpers import append_audit, parse_int
from models import InterviewQuestion
from stages import INTERVIEW_ROUNDS
from utils import ApiError, AuthContext, iso_utc_now

PASS_PERCENT = 70.0


@dataclass(frozen=True)
class QuestionKey:
    correctAnswer: str
    points: int


@dataclass(frozen=True)
class RoundEvaluation:
    score: int
    totalPoints: int
    percentage: float
    passed: bool


def evaluate_round(key: Sequence[QuestionKey], answers: Sequence[Any], *, pass_percent: float = PASS_PERCENT) -> RoundEvaluation:
    """
    Score answers positionally against the round's key.

    An answer matches only when its text equals the key exactly (no trimming,
    no case folding); a missing (None) answer never matches. Only submitted
    indices are scored; a short answer list earns partial credit and extra
    answers beyond the key are ignored.
    """
    total = sum(int(q.points) for q in key)
    if total <= 0:
        raise ApiError("NOT_FOUND", "Interview round has no scorable questions")

    score = 0
    for idx, answer in enumerate(answers or []):
        if idx >= len(key):
            break
        if answer is None:
            continue
        if str(answer) == str(key[idx].correctAnswer):
            score += int(key[idx].points)

    percentage = score / total * 100
    return RoundEvaluation(score=score, totalPoints=total, percentage=percentage, passed=percentage >= pass_percent)


def load_question_key(db, round_number: int) -> list[QuestionKey]:
    rows = (
        db.execute(
            select(InterviewQuestion)
            .where(InterviewQuestion.roundNumber == int(round_number))
            .where(InterviewQuestion.active == True)  # noqa: E712
            .order_by(InterviewQuestion.ordering.asc(), InterviewQuestion.id.asc())
        )
        .scalars()
        .all()
    )
    return [QuestionKey(correctAnswer=str(r.correctAnswer or ""), points=int(r.points or 0)) for r in rows]


_DEFAULT_QUESTIONS: dict[int, list[tuple[str, str, int]]] = {
    1: [
        ("What is 15% of 200?", "30", 10),
        ("Which number comes next: 2, 4, 8, 16, ...?", "32", 10),
        ("If 5 pens cost 50, what does 1 pen cost?", "10", 10),
        ("How many minutes are in 2.5 hours?", "150", 10),
        ("What is 3/4 of 80?", "60", 10),
    ],
    2: [
        ("Which HTTP method is idempotent and used to replace a resource: GET, POST or PUT?", "put", 10),
        ("Which SQL clause filters grouped rows: WHERE or HAVING?", "having", 10),
        ("What does CSV stand for?", "comma separated values", 10),
        ("Which spreadsheet function adds a range of cells?", "sum", 10),
        ("Is 1 KB equal to 1024 bytes (yes/no)?", "yes", 10),
    ],
    3: [
        ("Will you comply with the company code of conduct (yes/no)?", "yes", 10),
        ("Are you available for the joining date offered (yes/no)?", "yes", 10),
        ("Should customer data be shared outside the company (yes/no)?", "no", 10),
        ("Do you agree to background verification (yes/no)?", "yes", 10),
        ("Should workplace concerns be reported to HR (yes/no)?", "yes", 10),
    ],
}


def seed_default_questions(db) -> int:
    """Insert the default bank for any round that has no questions yet."""
    now = iso_utc_now()
    added = 0
    for round_number, rows in _DEFAULT_QUESTIONS.items():
        exists = (
            db.execute(select(InterviewQuestion.id).where(InterviewQuestion.roundNumber == round_number)).scalars().first()
        )
        if exists:
            continue
        for ordering, (question, answer, points) in enumerate(rows, start=1):
            db.add(
                InterviewQuestion(
                    roundNumber=round_number,
                    ordering=ordering * 10,
                    question=question,
                    correctAnswer=answer,
                    points=points,
                    active=True,
                    updatedAt=now,
                    updatedBy="SYSTEM_INIT",
                )
            )
            added += 1
    return added


def _round_number_from(data) -> int:
    n = parse_int((data or {}).get("roundNumber"), label="roundNumber")
    if n not in INTERVIEW_ROUNDS:
        raise ApiError("BAD_REQUEST", f"roundNumber must be one of {list(INTERVIEW_ROUNDS)}")
    return n


def interview_questions_list(data, auth: AuthContext | None, db, cfg):
    q = select(InterviewQuestion).order_by(InterviewQuestion.roundNumber.asc(), InterviewQuestion.ordering.asc())
    if (data or {}).get("roundNumber") not in (None, ""):
        q = q.where(InterviewQuestion.roundNumber == _round_number_from(data))
    rows = db.execute(q).scalars().all()
    items = [
        {
            "id": r.id,
            "roundNumber": r.roundNumber,
            "ordering": r.ordering,
            "question": r.question or "",
            "correctAnswer": r.correctAnswer or "",
            "points": r.points,
            "active": bool(r.active),
        }
        for r in rows
    ]
    return {"items": items, "total": len(items)}


def interview_questions_upsert(data, auth: AuthContext | None, db, cfg):
    """Replace the question key of one round."""
    round_number = _round_number_from(data)
    items = (data or {}).get("items")
    if not isinstance(items, list) or not items:
        raise ApiError("BAD_REQUEST", "items must be a non-empty list")

    rows: list[InterviewQuestion] = []
    now = iso_utc_now()
    for idx, it in enumerate(items, start=1):
        if not isinstance(it, dict):
            raise ApiError("BAD_REQUEST", "Each item must be an object")
        question = str(it.get("question") or "").strip()
        answer = str(it.get("correctAnswer") or "").strip()
        if not question or not answer:
            raise ApiError("BAD_REQUEST", f"Item {idx}: question and correctAnswer are required")
        points = parse_int(it.get("points", 1), label=f"points of item {idx}")
        if points <= 0:
            raise ApiError("BAD_REQUEST", f"Item {idx}: points must be positive")
        rows.append(
            InterviewQuestion(
                roundNumber=round_number,
                ordering=idx * 10,
                question=question,
                correctAnswer=answer,
                points=points,
                active=bool(it.get("active", True)),
                updatedAt=now,
                updatedBy=str(auth.userId if auth else "SYSTEM"),
            )
        )

    db.execute(delete(InterviewQuestion).where(InterviewQuestion.roundNumber == round_number))
    db.add_all(rows)

    append_audit(
        db,
        entityType="INTERVIEW_QUESTIONS",
        entityId=str(round_number),
        action="INTERVIEW_QUESTIONS_UPSERT",
        stageTag="INTERVIEW_KEY",
        actor=auth,
        meta={"count": len(rows)},
    )
    return {"roundNumber": round_number, "count": len(rows)}
