from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

from conftest import make_token
from db import SessionLocal
from models import AuditLog, CandidateDocument, InterviewRound, OnboardingProgress, SalaryStructure


CORRECT = {
    1: ["30", "32", "10", "150", "60"],
    2: ["put", "having", "comma separated values", "sum", "yes"],
    3: ["yes", "yes", "no", "yes", "yes"],
}

REQUIRED = ["resume", "id_proof", "address_proof", "education_certificate", "photo"]


def _api(client, *, action: str, token: str | None = None, data: dict[str, Any] | None = None):
    payload = {"action": action, "token": token or "", "data": data or {}}
    return client.post("/api", json=payload)


def _ok(resp) -> dict:
    body = resp.get_json()
    assert resp.status_code == 200, body
    assert body["ok"] is True, body
    return body["data"]


def _seed_salary(subject_id: str) -> None:
    db = SessionLocal()
    try:
        db.add(
            SalaryStructure(
                subjectId=subject_id,
                basicSalary=30000.0,
                totalEarnings=30000.0,
                totalDeductions=0.0,
                effectiveFrom="2025-01-01",
                isActive=True,
            )
        )
        db.commit()
    finally:
        db.close()


def test_health(app_client):
    _app, client = app_client
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "ok"
    assert resp.headers.get("X-Request-ID")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"


def test_missing_token_is_auth_invalid(app_client):
    _app, client = app_client
    resp = _api(client, action="ONBOARDING_INIT", data={"subjectId": "EMP-1"})
    body = resp.get_json()
    assert resp.status_code == 401
    assert body["ok"] is False
    assert body["error"]["code"] == "AUTH_INVALID"


def test_expired_token_is_rejected(app_client):
    _app, client = app_client
    token = make_token("HR-1", "HR", ttl_seconds=-60)
    resp = _api(client, action="ONBOARDING_INIT", token=token, data={"subjectId": "EMP-1"})
    assert resp.status_code == 401


def test_unknown_action(app_client):
    _app, client = app_client
    resp = _api(client, action="NOPE", token=make_token("A-1", "ADMIN"))
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["error"]["code"] == "BAD_REQUEST"


def test_status_before_start_is_not_found(app_client):
    _app, client = app_client
    resp = _api(client, action="ONBOARDING_STATUS_GET", token=make_token("HR-1", "HR"), data={"subjectId": "EMP-9"})
    body = resp.get_json()
    assert resp.status_code == 404
    assert body["error"]["message"] == "Onboarding not started"


def test_full_flow_through_api(app_client):
    _app, client = app_client
    emp = make_token("EMP-1", "EMPLOYEE")
    hr = make_token("HR-1", "HR")

    started = _ok(_api(client, action="INTERVIEW_START", token=emp))
    assert started["stage"] == "interview"
    assert len(started["rounds"]) == 3

    for n in (1, 2, 3):
        out = _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": n, "answers": CORRECT[n]}))
        assert out["passed"] is True
    assert out["stage"] == "documents"

    for t in REQUIRED:
        out = _ok(
            _api(
                client,
                action="DOCUMENT_UPLOAD",
                token=emp,
                data={"document": {"type": t, "filePath": f"/docs/EMP-1/{t}.pdf", "originalName": f"{t}.pdf"}},
            )
        )
    assert out["advanced"] is True
    assert out["stage"] == "offer"

    offer = _ok(
        _api(client, action="OFFER_LETTER_UPLOAD", token=hr, data={"subjectId": "EMP-1", "file": {"filePath": "/o/1.pdf"}})
    )
    assert offer["stage"] == "id_card"

    signed = _ok(_api(client, action="OFFER_LETTER_SIGN", token=emp, data={"file": {"filePath": "/o/1-signed.pdf"}}))
    assert signed["status"] == "signed"

    card = _ok(_api(client, action="ID_CARD_GENERATE", token=hr, data={"subjectId": "EMP-1"}))
    assert card["cardNumber"].startswith("HRC")
    assert card["cardNumber"].endswith("EMP-1")
    assert card["stage"] == "completed"

    status = _ok(_api(client, action="ONBOARDING_STATUS_GET", token=emp))
    assert status["currentStage"] == "completed"
    assert status["completedAt"]

    db = SessionLocal()
    try:
        tags = set(db.execute(select(AuditLog.stageTag).where(AuditLog.entityType == "ONBOARDING")).scalars())
    finally:
        db.close()
    assert {"INTERVIEW", "DOCUMENTS", "OFFER", "ID_CARD", "COMPLETED"} <= tags


def test_failed_round_returns_result_not_error(app_client):
    _app, client = app_client
    emp = make_token("EMP-2", "EMPLOYEE")
    _ok(_api(client, action="INTERVIEW_START", token=emp))

    out = _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": 1, "answers": ["0"] * 5}))
    assert out["passed"] is False
    assert out["stage"] == "failed"
    assert out["retryAfter"]

    elig = _ok(_api(client, action="ONBOARDING_RETRY_ELIGIBILITY", token=emp))
    assert elig["canRetry"] is False
    assert elig["daysRemaining"] == 30

    blocked = _api(client, action="DOCUMENT_UPLOAD", token=emp, data={"type": "resume", "filePath": "/r.pdf"})
    body = blocked.get_json()
    assert blocked.status_code == 409
    assert body["error"]["code"] == "CONFLICT"
    assert body["error"]["details"]["currentStage"] == "failed"
    assert body["error"]["details"]["retryAfter"] == out["retryAfter"]


def test_reset_is_admin_only_and_restarts(app_client):
    _app, client = app_client
    emp = make_token("EMP-3", "EMPLOYEE")
    _ok(_api(client, action="INTERVIEW_START", token=emp))
    _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": 1, "answers": []}))

    denied = _api(client, action="ONBOARDING_RESET", token=make_token("HR-1", "HR"), data={"subjectId": "EMP-3"})
    assert denied.status_code == 403

    out = _ok(_api(client, action="ONBOARDING_RESET", token=make_token("A-1", "ADMIN"), data={"subjectId": "EMP-3"}))
    assert out["stage"] == "profile"

    again = _ok(_api(client, action="INTERVIEW_START", token=emp))
    assert again["started"] is True


def test_employee_cannot_touch_other_subject(app_client):
    _app, client = app_client
    emp = make_token("EMP-4", "EMPLOYEE")
    resp = _api(client, action="ONBOARDING_INIT", token=emp, data={"subjectId": "EMP-5"})
    assert resp.status_code == 403
    assert resp.get_json()["error"]["code"] == "FORBIDDEN"


def test_employee_cannot_issue_offer_letter(app_client):
    _app, client = app_client
    emp = make_token("EMP-6", "EMPLOYEE")
    resp = _api(client, action="OFFER_LETTER_UPLOAD", token=emp, data={"file": {"filePath": "/o.pdf"}})
    assert resp.status_code == 403


def test_can_proceed_action(app_client):
    _app, client = app_client
    hr = make_token("HR-1", "HR")
    _ok(_api(client, action="ONBOARDING_INIT", token=hr, data={"subjectId": "EMP-7"}))

    yes = _ok(_api(client, action="ONBOARDING_CAN_PROCEED", token=hr, data={"subjectId": "EMP-7", "targetStage": "interview"}))
    no = _ok(_api(client, action="ONBOARDING_CAN_PROCEED", token=hr, data={"subjectId": "EMP-7", "targetStage": "offer"}))
    assert yes["canProceed"] is True
    assert no["canProceed"] is False

    bad = _api(client, action="ONBOARDING_CAN_PROCEED", token=hr, data={"subjectId": "EMP-7", "targetStage": "space"})
    assert bad.status_code == 400


def test_question_bank_admin(app_client):
    _app, client = app_client
    admin = make_token("A-1", "ADMIN")

    listed = _ok(_api(client, action="INTERVIEW_QUESTIONS_LIST", token=admin, data={"roundNumber": 1}))
    assert listed["total"] == 5

    _ok(
        _api(
            client,
            action="INTERVIEW_QUESTIONS_UPSERT",
            token=admin,
            data={"roundNumber": 1, "items": [{"question": "2+2?", "correctAnswer": "4", "points": 10}]},
        )
    )

    emp = make_token("EMP-8", "EMPLOYEE")
    _ok(_api(client, action="INTERVIEW_START", token=emp))
    out = _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": 1, "answers": ["4"]}))
    assert out["passed"] is True
    assert out["totalPoints"] == 10


def test_payroll_rbac_and_arithmetic(app_client):
    _app, client = app_client
    _seed_salary("EMP-9")

    denied = _api(client, action="PAYROLL_CALCULATE", token=make_token("HR-1", "HR"), data={"subjectId": "EMP-9"})
    assert denied.status_code == 403

    out = _ok(
        _api(
            client,
            action="PAYROLL_CALCULATE",
            token=make_token("AC-1", "ACCOUNTS"),
            data={
                "subjectId": "EMP-9",
                "period": "2025-03",
                "attendance": {"presentDays": 22, "totalDays": 22, "lopDays": 0, "overtimeHours": 0},
            },
        )
    )
    assert out["netSalary"] == 30000.0


def test_rest_routes_map_to_actions(app_client):
    _app, client = app_client
    headers = {"Authorization": f"Bearer {make_token('HR-1', 'HR')}"}

    resp = client.post("/api/onboarding/EMP-10/interview/start", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["stage"] == "interview"

    resp = client.post(
        "/api/onboarding/EMP-10/interview/rounds/1", headers=headers, json={"answers": CORRECT[1]}
    )
    assert resp.get_json()["data"]["passed"] is True

    resp = client.get("/api/onboarding/EMP-10/can-proceed?targetStage=documents", headers=headers)
    assert resp.get_json()["data"]["canProceed"] is True

    resp = client.get("/api/onboarding/EMP-10", headers=headers)
    assert resp.get_json()["data"]["currentStage"] == "interview"

    resp = client.post("/api/onboarding/EMP-10/id-card", headers=headers)
    assert resp.status_code == 409

    resp = client.get("/api/onboarding/EMP-10")
    assert resp.status_code == 401


def _raise_storage_error(*_args, **_kwargs):
    raise RuntimeError("stage store unavailable")


def _subject_counts(subject_id: str) -> tuple[int, int, str | None]:
    db = SessionLocal()
    try:
        rounds = db.execute(
            select(func.count()).select_from(InterviewRound).where(InterviewRound.subjectId == subject_id)
        ).scalar_one()
        docs = db.execute(
            select(func.count()).select_from(CandidateDocument).where(CandidateDocument.subjectId == subject_id)
        ).scalar_one()
        state = db.execute(
            select(OnboardingProgress.stage).where(OnboardingProgress.subjectId == subject_id)
        ).scalar_one_or_none()
    finally:
        db.close()
    return int(rounds), int(docs), state


def test_interview_start_rolls_back_rounds_when_stage_write_fails(app_client, monkeypatch):
    _app, client = app_client
    hr = make_token("HR-1", "HR")
    _ok(_api(client, action="ONBOARDING_INIT", token=hr, data={"subjectId": "EMP-20"}))

    monkeypatch.setattr("actions.onboarding.set_stage_state", _raise_storage_error)
    resp = _api(client, action="INTERVIEW_START", token=hr, data={"subjectId": "EMP-20"})
    body = resp.get_json()

    assert resp.status_code == 500
    assert body["error"]["code"] == "INTERNAL"
    assert _subject_counts("EMP-20") == (0, 0, "profile")


def test_reset_keeps_artifacts_when_stage_write_fails(app_client, monkeypatch):
    _app, client = app_client
    emp = make_token("EMP-21", "EMPLOYEE")
    admin = make_token("A-1", "ADMIN")
    _ok(_api(client, action="INTERVIEW_START", token=emp))
    _ok(_api(client, action="DOCUMENT_UPLOAD", token=emp, data={"type": "resume", "filePath": "/docs/EMP-21/r.pdf"}))
    failed = _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": 1, "answers": []}))
    assert failed["stage"] == "failed"

    monkeypatch.setattr("actions.onboarding.set_stage_state", _raise_storage_error)
    resp = _api(client, action="ONBOARDING_RESET", token=admin, data={"subjectId": "EMP-21"})

    assert resp.status_code == 500
    assert _subject_counts("EMP-21") == (3, 1, "failed")

    status = _ok(_api(client, action="ONBOARDING_STATUS_GET", token=emp))
    assert status["retryAfter"] == failed["retryAfter"]


def test_notification_error_does_not_fail_committed_action(app_client, monkeypatch):
    _app, client = app_client
    emp = make_token("EMP-22", "EMPLOYEE")
    _ok(_api(client, action="INTERVIEW_START", token=emp))

    monkeypatch.setattr("services.notifications.send_notification", _raise_storage_error)
    out = _ok(_api(client, action="INTERVIEW_ROUND_SUBMIT", token=emp, data={"roundNumber": 1, "answers": []}))

    assert out["stage"] == "failed"
    assert _subject_counts("EMP-22")[2] == "failed"
