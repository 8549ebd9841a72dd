"""Retention for abandoned signups.

Intents that never reach PAID_READY are marked TIMEOUT after ``intent_abandon_after_hours`` without
activity, and TIMEOUT/ERROR intents that were never linked to a company are deleted after
``intent_retention_days``. PAID_READY intents are never expired: the processor already authorized them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from provisioning.config import get_settings
from provisioning.database import SessionLocal
from provisioning.models.signup_intent import SignupIntent
from provisioning.services.audit_log import create_log, CATEGORY_RETENTION
from provisioning.services.intent_store import move
from provisioning.services.state_machine import IntentStatus, RECOVERABLE

logger = logging.getLogger(__name__)

ABANDONABLE = (IntentStatus.CREATED, IntentStatus.CHECKOUT_CREATED)


@dataclass
class RetentionReport:
    expired: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)


def expire_abandoned_intents(db: Session, now: datetime | None = None, *, dry_run: bool = False) -> list[str]:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=settings.intent_abandon_after_hours)
    stale = (
        db.query(SignupIntent)
        .filter(
            SignupIntent.status.in_(ABANDONABLE),
            SignupIntent.linked_company_id.is_(None),
            SignupIntent.updated_at < cutoff,
        )
        .all()
    )
    ids = [i.id for i in stale]
    if dry_run:
        return ids
    for intent in stale:
        move(db, intent, IntentStatus.TIMEOUT, trigger="abandoned")
    if ids:
        db.commit()
        logger.info("[Retention] Marked %d abandoned intent(s) TIMEOUT", len(ids))
    return ids


def purge_stale_intents(db: Session, now: datetime | None = None, *, dry_run: bool = False) -> list[str]:
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.intent_retention_days)
    stale = (
        db.query(SignupIntent)
        .filter(
            SignupIntent.status.in_(tuple(RECOVERABLE)),
            SignupIntent.linked_company_id.is_(None),
            SignupIntent.updated_at < cutoff,
        )
        .all()
    )
    ids = [i.id for i in stale]
    if dry_run or not ids:
        return ids
    for intent in stale:
        create_log(
            db,
            CATEGORY_RETENTION,
            "Signup intent purged",
            f"Intent {intent.id} ({intent.status.value}) purged after {settings.intent_retention_days} days without activity.",
            intent_id=intent.id,
            actor_email=intent.email,
            meta={"status": intent.status},
        )
        db.delete(intent)
    db.commit()
    logger.info("[Retention] Purged %d stale intent(s)", len(ids))
    return ids


def run_retention(db: Session, now: datetime | None = None, *, dry_run: bool = False) -> RetentionReport:
    return RetentionReport(
        expired=expire_abandoned_intents(db, now, dry_run=dry_run),
        purged=purge_stale_intents(db, now, dry_run=dry_run),
    )


def run_retention_job() -> None:
    """Scheduler entry point: own session, never raises into the scheduler thread."""
    db = SessionLocal()
    try:
        report = run_retention(db)
        if report.expired or report.purged:
            logger.info("[Retention] expired=%s purged=%s", len(report.expired), len(report.purged))
    except Exception:
        db.rollback()
        logger.exception("[Retention] job failed")
    finally:
        db.close()
