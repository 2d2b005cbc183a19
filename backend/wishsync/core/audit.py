"""Audit trail for logins, list edits and reservation changes.

One JSON line per event on the ``wishsync.audit`` logger; failures go out at
warning level so they can be alerted on separately.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request

from wishsync.core.logger import get_logger
from wishsync.core.rate_limit import client_address

logger = get_logger("audit")

REDACTED = "***REDACTED***"
_SENSITIVE_KEYS = {"init_data", "initdata", "hash", "token", "secret", "authorization"}


class AuditAction(str, Enum):
    TELEGRAM_LOGIN = "telegram_login"
    TELEGRAM_LOGIN_FAILED = "telegram_login_failed"
    WISHLIST_CREATE = "wishlist_create"
    ITEMS_REPLACE = "items_replace"
    ITEM_RESERVE = "item_reserve"
    RESERVATION_CANCEL = "reservation_cancel"


def redact(details: dict[str, Any]) -> dict[str, Any]:
    return {key: REDACTED if key.lower() in _SENSITIVE_KEYS else value for key, value in details.items()}


def build_audit_event(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }
    if user_id is not None:
        event["user_id"] = str(user_id)
    if request is not None:
        event["ip"] = client_address(request)
        event["request_id"] = request.headers.get("X-Request-Id", "")
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
    if details:
        event["details"] = redact(details)
    return event


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    event = build_audit_event(action, request=request, user_id=user_id, details=details, success=success)
    line = json.dumps(event, ensure_ascii=False, default=str)
    logger.log(logging.INFO if success else logging.WARNING, "AUDIT %s", line)
