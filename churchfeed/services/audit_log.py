"""Append-only audit trail for registrations, payments, failed logins and subscription changes.

Rows are only ever inserted; the caller owns the commit.
"""
import enum
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from churchfeed.models.audit_log import AuditLog

CATEGORY_REGISTRATION = "registration"
CATEGORY_PAYMENT = "payment"
CATEGORY_FAILED_ATTEMPT = "failed_attempt"
CATEGORY_STATUS_CHANGE = "status_change"

CATEGORIES = (CATEGORY_REGISTRATION, CATEGORY_PAYMENT, CATEGORY_FAILED_ATTEMPT, CATEGORY_STATUS_CHANGE)

# Column limits (match model)
_TITLE_LEN = 255
_EMAIL_LEN = 255
_IP_LEN = 64
_USER_AGENT_LEN = 500
_MESSAGE_LEN = 10_000


def _clip(value: str | None, limit: int) -> str | None:
    value = (value or "").strip()
    return value[:limit] or None


def _meta_value(v: Any) -> Any:
    # Meta holds flat ids, reasons and statuses
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, enum.Enum):
        return v.value
    return str(v)


def request_context(request: Request | None) -> dict[str, str | None]:
    """ip_address / user_agent keyword arguments for create_log."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def create_log(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    church_id: int | None = None,
    actor_user_id: int | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    if category not in CATEGORIES:
        raise ValueError(f"Unknown audit category {category!r}")
    entry = AuditLog(
        category=category,
        title=_clip(title, _TITLE_LEN) or category,
        message=_clip(message, _MESSAGE_LEN) or "",
        church_id=church_id,
        actor_user_id=actor_user_id,
        actor_email=_clip(actor_email, _EMAIL_LEN),
        ip_address=_clip(ip_address, _IP_LEN),
        user_agent=_clip(user_agent, _USER_AGENT_LEN),
        meta={str(k): _meta_value(v) for k, v in meta.items()} if meta else None,
    )
    db.add(entry)
    db.flush()
    return entry
