from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import jwt

from config import Config
from utils import ApiError, AuthContext, normalize_role


PUBLIC_ACTIONS: set[str] = set()

KNOWN_ROLES = {"ADMIN", "HR", "ACCOUNTS", "EMPLOYEE"}

_SELF = ["ADMIN", "HR", "EMPLOYEE"]

STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "ONBOARDING_INIT": _SELF,
    "ONBOARDING_CAN_PROCEED": _SELF,
    "ONBOARDING_STATUS_GET": _SELF,
    "ONBOARDING_RETRY_ELIGIBILITY": _SELF,
    "ONBOARDING_RESET": ["ADMIN"],
    "INTERVIEW_START": _SELF,
    "INTERVIEW_ROUND_SUBMIT": _SELF,
    "INTERVIEW_QUESTIONS_LIST": ["ADMIN", "HR"],
    "INTERVIEW_QUESTIONS_UPSERT": ["ADMIN"],
    "DOCUMENT_UPLOAD": _SELF,
    "OFFER_LETTER_UPLOAD": ["ADMIN", "HR"],
    "OFFER_LETTER_SIGN": _SELF,
    "ID_CARD_GENERATE": ["ADMIN", "HR"],
    "PAYROLL_CALCULATE": ["ADMIN", "ACCOUNTS"],
}

_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def _exp_iso(exp: Any) -> str:
    try:
        dt = datetime.fromtimestamp(int(exp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return ""
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def decode_access_token(cfg: Config, token: str) -> dict[str, Any]:
    if not cfg.JWT_SECRET:
        raise ApiError("INTERNAL", "Missing JWT_SECRET")
    try:
        return jwt.decode(token, cfg.JWT_SECRET, algorithms=[cfg.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise ApiError("AUTH_INVALID", "Token expired") from e
    except jwt.InvalidTokenError as e:
        raise ApiError("AUTH_INVALID", "Invalid token") from e


def validate_access_token(cfg: Config, token: Any) -> AuthContext:
    """Bearer token -> AuthContext; anything unusable yields an invalid context."""
    if not token or not isinstance(token, str):
        return _INVALID
    try:
        payload = decode_access_token(cfg, token)
    except ApiError as e:
        if e.code != "AUTH_INVALID":
            raise
        return _INVALID

    sub = str(payload.get("sub") or "").strip()
    role = normalize_role(payload.get("role"))
    if not sub or not role:
        return _INVALID

    return AuthContext(
        valid=True,
        userId=sub,
        email=str(payload.get("email") or "").strip().lower(),
        role=role,
        expiresAt=_exp_iso(payload.get("exp")),
    )


def assert_permission(role: str, action: str) -> None:
    role_u = normalize_role(role) or ""
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required")
    if role_u not in KNOWN_ROLES:
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}")
    if role_u not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}")


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
