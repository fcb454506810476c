from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, request
from flask_cors import CORS

from actions import dispatch
from actions.interview import seed_default_questions
from auth import assert_permission, is_public_action, role_or_public, validate_access_token
from config import Config
from db import SessionLocal, init_engine
from models import AuditLog
from services.notifications import discard_notifications, flush_notifications
from utils import (
    ApiError,
    AuthContext,
    SimpleRateLimiter,
    err,
    iso_utc_now,
    new_log_id,
    now_monotonic,
    ok,
    parse_json_body,
    redact_for_audit,
)

log = logging.getLogger("api")

rest_api = Blueprint("rest_api", __name__)


def _bearer_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return ""


def _api_call_audit(action_u: str, auth_ctx: Optional[AuthContext], data: Any, stage_tag: str) -> AuditLog:
    return AuditLog(
        logId=new_log_id(),
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=action_u,
        fromState="",
        toState="",
        stageTag=stage_tag,
        remark="",
        actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        at=iso_utc_now(),
        metaJson=json.dumps({"data": redact_for_audit(data or {})}),
    )


def _run_action(db, cfg: Config, action_u: str, auth_ctx: Optional[AuthContext], data: dict, *, stage_tag: str):
    """Dispatch one action as a single unit of work; notifications go out only after commit."""
    role = role_or_public(auth_ctx)
    assert_permission(role, action_u)

    out = dispatch(action_u, data or {}, auth_ctx, db, cfg)
    db.add(_api_call_audit(action_u, auth_ctx, data, stage_tag))
    db.commit()

    flush_notifications(db, cfg)

    latency_ms = int((now_monotonic() - g.start_ts) * 1000)
    log.info(
        "request_id=%s action=%s user=%s role=%s latency_ms=%s",
        g.request_id,
        action_u,
        (auth_ctx.userId if auth_ctx else "PUBLIC"),
        (auth_ctx.role if auth_ctx else "PUBLIC"),
        latency_ms,
    )
    return out


def _rest_handle(action: str, data: dict):
    cfg: Config = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()

    db = None
    auth_ctx = None
    try:
        db = SessionLocal()
        auth_ctx = validate_access_token(cfg, _bearer_token())
        if not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired token")

        out = _run_action(db, cfg, action_u, auth_ctx, data, stage_tag="API_CALL_REST")
        return ok(out)[0]
    except ApiError as e:
        if db is not None:
            db.rollback()
            discard_notifications(db)
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status, details=e.details)[0], e.http_status
    except Exception:
        if db is not None:
            db.rollback()
            discard_notifications(db)
        api_err = ApiError("INTERNAL", "Unexpected error")
        _write_error_audit(action_u, auth_ctx, data, api_err)
        log.exception("rest request_id=%s action=%s", g.request_id, action_u)
        return err(api_err.code, api_err.message)[0], api_err.http_status
    finally:
        if db is not None:
            db.close()


def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@rest_api.get("/api/onboarding/<subject_id>")
def rest_onboarding_status(subject_id: str):
    return _rest_handle("ONBOARDING_STATUS_GET", {"subjectId": subject_id})


@rest_api.post("/api/onboarding/<subject_id>/init")
def rest_onboarding_init(subject_id: str):
    return _rest_handle("ONBOARDING_INIT", {"subjectId": subject_id})


@rest_api.get("/api/onboarding/<subject_id>/can-proceed")
def rest_onboarding_can_proceed(subject_id: str):
    return _rest_handle(
        "ONBOARDING_CAN_PROCEED",
        {"subjectId": subject_id, "targetStage": str(request.args.get("targetStage") or "").strip()},
    )


@rest_api.get("/api/onboarding/<subject_id>/retry-eligibility")
def rest_onboarding_retry_eligibility(subject_id: str):
    return _rest_handle("ONBOARDING_RETRY_ELIGIBILITY", {"subjectId": subject_id})


@rest_api.post("/api/onboarding/<subject_id>/interview/start")
def rest_interview_start(subject_id: str):
    return _rest_handle("INTERVIEW_START", {"subjectId": subject_id})


@rest_api.post("/api/onboarding/<subject_id>/interview/rounds/<int:round_number>")
def rest_interview_round_submit(subject_id: str, round_number: int):
    body = _body()
    return _rest_handle(
        "INTERVIEW_ROUND_SUBMIT",
        {"subjectId": subject_id, "roundNumber": round_number, "answers": body.get("answers")},
    )


@rest_api.post("/api/onboarding/<subject_id>/documents")
def rest_document_upload(subject_id: str):
    return _rest_handle("DOCUMENT_UPLOAD", {"subjectId": subject_id, "document": _body()})


@rest_api.post("/api/onboarding/<subject_id>/offer-letter")
def rest_offer_letter_upload(subject_id: str):
    return _rest_handle("OFFER_LETTER_UPLOAD", {"subjectId": subject_id, "file": _body()})


@rest_api.post("/api/onboarding/<subject_id>/offer-letter/sign")
def rest_offer_letter_sign(subject_id: str):
    return _rest_handle("OFFER_LETTER_SIGN", {"subjectId": subject_id, "file": _body()})


@rest_api.post("/api/onboarding/<subject_id>/id-card")
def rest_id_card_generate(subject_id: str):
    return _rest_handle("ID_CARD_GENERATE", {"subjectId": subject_id, "card": _body()})


@rest_api.post("/api/onboarding/<subject_id>/reset")
def rest_onboarding_reset(subject_id: str):
    return _rest_handle("ONBOARDING_RESET", {"subjectId": subject_id})


@rest_api.post("/api/payroll/<subject_id>/calculate")
def rest_payroll_calculate(subject_id: str):
    body = _body()
    return _rest_handle(
        "PAYROLL_CALCULATE",
        {"subjectId": subject_id, "period": body.get("period"), "attendance": body.get("attendance")},
    )


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init

    Base.metadata.create_all(bind=engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg

    CORS(app, origins=cfg.ALLOWED_ORIGINS, supports_credentials=False)
    app.register_blueprint(rest_api)

    limiter = SimpleRateLimiter()

    if cfg.SEED_INTERVIEW_QUESTIONS:
        db0 = SessionLocal()
        try:
            added = seed_default_questions(db0)
            db0.commit()
            if added:
                log.info("seeded %s default interview questions", added)
        finally:
            db0.close()

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/health")
    def health():
        return ok({"status": "ok"})[0]

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.", http_status=405)

    @app.post("/api")
    def api_route():
        cfg2: Config = app.config["CFG"]
        raw = request.get_data(as_text=True)
        db = None
        auth_ctx = None
        action_u = ""
        data: Any = {}

        try:
            body = parse_json_body(raw)
            action_u = str(body.get("action") or "").upper().strip()
            token = body.get("token") or _bearer_token()
            data = body.get("data") or {}
            if not isinstance(data, dict):
                raise ApiError("BAD_REQUEST", "data must be an object")

            if not action_u:
                raise ApiError("BAD_REQUEST", "Missing action")

            ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
            limiter.check(f"{ip}:GLOBAL", cfg2.RATE_LIMIT_GLOBAL)
            limiter.check(f"{ip}:API:{action_u}", cfg2.RATE_LIMIT_DEFAULT)

            db = SessionLocal()

            if not is_public_action(action_u):
                auth_ctx = validate_access_token(cfg2, token)
                if not auth_ctx.valid:
                    raise ApiError("AUTH_INVALID", "Invalid or expired token")
            elif token:
                maybe = validate_access_token(cfg2, token)
                auth_ctx = maybe if maybe.valid else None

            out = _run_action(db, cfg2, action_u, auth_ctx, data, stage_tag="API_CALL")
            return ok(out)[0]
        except ApiError as e:
            if db is not None:
                db.rollback()
                discard_notifications(db)
            _write_error_audit(action_u, auth_ctx, data, e)
            return err(e.code, e.message, http_status=e.http_status, details=e.details)[0], e.http_status
        except Exception:
            if db is not None:
                db.rollback()
                discard_notifications(db)
            api_err = ApiError("INTERNAL", "Unexpected error")
            _write_error_audit(action_u, auth_ctx, data, api_err)
            log.exception("request_id=%s action=%s", g.request_id, action_u)
            return err(api_err.code, api_err.message)[0], api_err.http_status
        finally:
            if db is not None:
                db.close()

    return app


def _write_error_audit(action: str, auth_ctx, data: Any, err_obj: ApiError):
    db2 = SessionLocal()
    try:
        db2.add(
            AuditLog(
                logId=new_log_id(),
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                fromState="",
                toState="",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                at=iso_utc_now(),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data or {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        db2.rollback()
        log.warning("failed to write error audit action=%s", action, exc_info=True)
    finally:
        db2.close()


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
