"""
Best-effort onboarding notifications.

Actions queue events on the request's session; the HTTP layer delivers them
only after the unit of work commits and drops them on rollback. Delivery is a
POST to NOTIFY_WEBHOOK_URL (the portal's mail/SMS relay). A failed delivery
is logged and never surfaces to the onboarding caller.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from config import Config
from utils import iso_utc_now

log = logging.getLogger("notifications")

_PENDING_KEY = "pending_notifications"

INTERVIEW_FAILED = "INTERVIEW_FAILED"
INTERVIEW_PASSED = "INTERVIEW_PASSED"
DOCUMENTS_COMPLETE = "DOCUMENTS_COMPLETE"
OFFER_LETTER_ISSUED = "OFFER_LETTER_ISSUED"
OFFER_LETTER_SIGNED = "OFFER_LETTER_SIGNED"
ID_CARD_GENERATED = "ID_CARD_GENERATED"
ONBOARDING_RESET = "ONBOARDING_RESET"


def queue_notification(db, *, event: str, subject_id: str, payload: dict[str, Any] | None = None) -> None:
    db.info.setdefault(_PENDING_KEY, []).append(
        {"event": str(event), "subjectId": str(subject_id), "payload": dict(payload or {}), "queuedAt": iso_utc_now()}
    )


def pending_notifications(db) -> list[dict[str, Any]]:
    return list(db.info.get(_PENDING_KEY) or [])


def discard_notifications(db) -> None:
    db.info.pop(_PENDING_KEY, None)


def send_notification(cfg: Config, message: dict[str, Any]) -> bool:
    url = str(getattr(cfg, "NOTIFY_WEBHOOK_URL", "") or "").strip()
    if not url:
        log.info("notification skipped (no webhook) event=%s subject=%s", message.get("event"), message.get("subjectId"))
        return False

    headers: dict[str, str] = {}
    if cfg.NOTIFY_WEBHOOK_API_KEY:
        headers["X-Api-Key"] = cfg.NOTIFY_WEBHOOK_API_KEY

    try:
        resp = requests.post(url, json=message, headers=headers, timeout=cfg.NOTIFY_TIMEOUT_SECONDS)
    except requests.RequestException:
        log.warning("notification delivery failed event=%s subject=%s", message.get("event"), message.get("subjectId"), exc_info=True)
        return False

    if resp.status_code >= 400:
        log.warning(
            "notification rejected event=%s subject=%s http=%s body=%s",
            message.get("event"),
            message.get("subjectId"),
            resp.status_code,
            str(resp.text or "").strip()[:200],
        )
        return False
    return True


def flush_notifications(db, cfg: Config) -> int:
    """Deliver queued events after commit. Returns the number delivered."""
    messages = pending_notifications(db)
    discard_notifications(db)
    delivered = 0
    for message in messages:
        # The unit of work is already committed; one bad event must not reach the caller.
        try:
            if send_notification(cfg, message):
                delivered += 1
        except Exception:
            log.exception("notification delivery error event=%s subject=%s", message.get("event"), message.get("subjectId"))
    return delivered
