from __future__ import annotations

from typing import Any, Optional

from models import AuditLog
from utils import ApiError, AuthContext, iso_utc_now, new_log_id, safe_json_string


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str,
    actor: AuthContext | None,
    fromState: str = "",
    toState: str = "",
    remark: str = "",
    meta: Any = None,
    at: Optional[str] = None,
) -> None:
    if meta is None:
        meta_json = "{}"
    elif isinstance(meta, str):
        meta_json = meta
    else:
        meta_json = safe_json_string(meta, "{}")

    db.add(
        AuditLog(
            logId=new_log_id(),
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or "").upper(),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId if actor else "SYSTEM"),
            actorRole=str(actor.role if actor else "SYSTEM"),
            at=str(at or iso_utc_now()),
            metaJson=meta_json,
        )
    )


def subject_id_from(data: dict, auth: AuthContext | None) -> str:
    """
    Resolve the subject an action targets.

    EMPLOYEE callers act on themselves; an explicit subjectId naming someone
    else is refused rather than silently rewritten.
    """
    raw = str((data or {}).get("subjectId") or "").strip()
    role = str(getattr(auth, "role", "") or "").upper()
    if role == "EMPLOYEE":
        own = str(auth.userId or "").strip()
        if raw and raw != own:
            raise ApiError("FORBIDDEN", "Employees can only access their own onboarding")
        return own
    if not raw:
        raise ApiError("BAD_REQUEST", "Missing subjectId")
    return raw


def parse_int(value: Any, *, label: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", f"Invalid {label}")
