"""Append-only audit trail for signup intents. Records are never updated or deleted."""
from __future__ import annotations

import enum
from typing import Any

from sqlalchemy.orm import Session

from provisioning.models.audit_log import AuditLog

CATEGORY_STATUS_CHANGE = "status_change"
CATEGORY_FINALIZE = "finalize"
CATEGORY_FAILED_ATTEMPT = "failed_attempt"
CATEGORY_RETENTION = "retention"

_USER_AGENT_LEN = 500  # AuditLog.user_agent


def _plain(value: Any) -> Any:
    # meta carries statuses, providers and module lists; the JSON column takes the plain values
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def create_log(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    intent_id: str | None = None,
    company_id: int | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """Add one audit record to the session. Committing is up to the caller."""
    entry = AuditLog(
        category=category,
        title=title,
        message=message,
        intent_id=intent_id,
        company_id=company_id,
        actor_email=actor_email,
        ip_address=ip_address,
        user_agent=user_agent[:_USER_AGENT_LEN] if user_agent else None,
        meta={k: _plain(v) for k, v in meta.items()} if meta else None,
    )
    db.add(entry)
    db.flush()
    return entry


def log_transition(db: Session, intent, old, new, *, trigger: str, meta: dict[str, Any] | None = None) -> AuditLog | None:
    """Audit one intent status change; same-state moves are not logged."""
    if old == new:
        return None
    old_v = getattr(old, "value", old)
    new_v = getattr(new, "value", new)
    return create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        f"Signup intent {new_v}",
        f"Intent {intent.id} moved {old_v} -> {new_v} ({trigger}).",
        intent_id=intent.id,
        actor_email=intent.email,
        meta={"old_status": old_v, "new_status": new_v, "trigger": trigger, **(meta or {})},
    )
