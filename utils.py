from __future__ import annotations

import json
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from cachetools import TTLCache
from dateutil import parser as dt_parser
from zoneinfo import ZoneInfo

ALLOWED_ERROR_CODES = {
    "BAD_REQUEST",
    "AUTH_INVALID",
    "FORBIDDEN",
    "NOT_FOUND",
    "CONFLICT",
    "INTERNAL",
}

_CODE_MAP = {
    "BAD_JSON": "BAD_REQUEST",
    "UNKNOWN_ERROR": "INTERNAL",
    "ACTION_NOT_IMPLEMENTED": "BAD_REQUEST",
    "AUTH_REQUIRED": "AUTH_INVALID",
    "AUTH_EXPIRED": "AUTH_INVALID",
    "RBAC_DENIED": "FORBIDDEN",
    "ONBOARDING_NOT_STARTED": "NOT_FOUND",
    "TRANSITION_REJECTED": "CONFLICT",
}

_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INTERNAL": 500,
}


def map_error_code(code: str) -> str:
    c = str(code or "").upper().strip()
    if c in ALLOWED_ERROR_CODES:
        return c
    return _CODE_MAP.get(c, "INTERNAL")


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.code = map_error_code(code)
        self.message = str(message or "")
        self.http_status = int(http_status or _HTTP_STATUS.get(self.code, 400))
        self.details = details


def ok(data: Any, http_status: int = 200):
    return {"ok": True, "data": data}, http_status


def err(code: str, message: str, http_status: int = 200, details: Any = None):
    return {
        "ok": False,
        "error": {"code": map_error_code(code), "message": str(message or ""), "details": details},
    }, http_status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    x = dt.astimezone(timezone.utc)
    # Match JS Date.toJSON() millisecond precision.
    x = x.replace(microsecond=(x.microsecond // 1000) * 1000)
    return x.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_utc_now() -> str:
    return to_iso_utc(utc_now())


def parse_datetime_maybe(value: Any, *, app_timezone: str = "UTC") -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        try:
            dt = dt_parser.parse(s)
        except (ValueError, OverflowError):
            return None

    if dt.tzinfo is None:
        try:
            dt = dt.replace(tzinfo=ZoneInfo(app_timezone))
        except Exception:
            dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def new_log_id() -> str:
    return f"LOG-{new_uuid()}"


def parse_json_body(raw_text: str) -> dict:
    try:
        obj = json.loads(raw_text or "{}")
    except ValueError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(obj, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object")
    return obj


def safe_json_string(value: Any, fallback: str = "") -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return fallback


def redact_for_audit(obj: Any) -> Any:
    if not obj or not isinstance(obj, (dict, list)):
        return obj
    try:
        copy = json.loads(json.dumps(obj))
    except (TypeError, ValueError):
        return obj

    # Answers are the interview key in disguise; file names may embed PII.
    redacted_keys = {"token", "answers", "originalName", "signedOriginalName", "fileName"}

    def _walk(x: Any) -> Any:
        if isinstance(x, dict):
            for k in list(x.keys()):
                if k in redacted_keys:
                    x[k] = "[REDACTED]"
                else:
                    x[k] = _walk(x[k])
            return x
        if isinstance(x, list):
            return [_walk(v) for v in x]
        return x

    return _walk(copy)


_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")
_WINDOWS_FORBIDDEN_RE = re.compile(r"[\\/:*?\"<>|]+")


def sanitize_filename(name: str) -> str:
    s = str(name or "").strip()
    s = _CONTROL_CHARS_RE.sub("", s)
    s = _WINDOWS_FORBIDDEN_RE.sub("_", s)
    s = re.sub(r"\s+", " ", s).strip()
    s = re.sub(r"_+", "_", s)
    if not s or s in {".", ".."}:
        s = "file"
    if len(s) > 120:
        s = s[:120]
    return s


@dataclass(frozen=True)
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str


def normalize_role(role: Any) -> Optional[str]:
    r = str(role or "").strip().upper()
    return r or None


class SimpleRateLimiter:
    def __init__(self):
        self._counts = TTLCache(maxsize=50_000, ttl=60)

    @staticmethod
    def _parse_limit_per_minute(limit: str) -> int:
        m = re.match(r"^\s*(\d+)\s+per\s+minute\s*$", str(limit or ""), re.IGNORECASE)
        if not m:
            return 300
        return int(m.group(1))

    def check(self, key: str, limit: str) -> None:
        max_per_minute = self._parse_limit_per_minute(limit)
        current = int(self._counts.get(key, 0)) + 1
        self._counts[key] = current
        if current > max_per_minute:
            raise ApiError("CONFLICT", "Rate limit exceeded", http_status=429)


def now_monotonic() -> float:
    return time.monotonic()
