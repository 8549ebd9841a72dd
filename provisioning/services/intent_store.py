"""Signup intent store: create, read and status bookkeeping for SignupIntent rows.

The intent row is the single source of truth for where a signup stands. Callers own the commit.
"""
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from provisioning.errors import IntentNotFoundError, ValidationError
from provisioning.models.plan import SubscriptionPlan
from provisioning.models.signup_intent import SignupIntent
from provisioning.services import pricing
from provisioning.services.audit_log import create_log, log_transition, CATEGORY_FAILED_ATTEMPT
from provisioning.services.provider_selector import PaymentProvider, normalize_country, select_provider
from provisioning.services.state_machine import IntentStatus, transition

logger = logging.getLogger(__name__)


def dedupe_modules(modules: list[str] | None) -> list[str]:
    """Selected add-ons: trimmed, empties dropped, first occurrence wins."""
    seen: dict[str, None] = {}
    for m in modules or []:
        key = str(m).strip()
        if key:
            seen.setdefault(key, None)
    return list(seen)


def get_active_plan(db: Session, plan_id: str) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan or not plan.active:
        raise ValidationError("Invalid or inactive plan.")
    return plan


def create_intent(
    db: Session,
    *,
    email: str,
    full_name: str | None,
    company_name: str | None,
    plan_id: str,
    modules: list[str] | None,
    billing_country: str,
    provider: str | None = None,
    payment_method_ref: str | None = None,
) -> SignupIntent:
    email_norm = (email or "").strip().lower()
    country = normalize_country(billing_country)
    if not email_norm or not plan_id or not country:
        raise ValidationError("email, plan_id and billing_country are required.")
    plan = get_active_plan(db, plan_id)

    resolved = select_provider(country)
    if provider and PaymentProvider(provider) != resolved:
        raise ValidationError(f"Billing country {country} is processed by {resolved.value}, not {provider}.")

    modules_clean = dedupe_modules(modules)
    q = pricing.quote(plan, modules_clean, resolved)
    intent = SignupIntent(
        email=email_norm,
        full_name=(full_name or "").strip() or None,
        company_name=(company_name or "").strip() or None,
        plan_id=plan.id,
        modules=modules_clean,
        billing_country=country,
        payment_provider=resolved,
        # Held until checkout authorizes it with the processor
        payment_method_ref=(payment_method_ref or "").strip() or None,
        status=IntentStatus.CREATED,
        attempts=0,
        amount_usd=q.amount_usd,
        amount_ars=q.amount_ars,
        fx_rate_usd_ars=q.fx_rate_usd_ars,
        fx_rate_at=q.fx_rate_at,
        trial_days=0,
    )
    db.add(intent)
    db.flush()
    logger.info("[Signup] Intent %s created for %s (provider=%s plan=%s)", intent.id, email_norm, resolved.value, plan.id)
    return intent


def get_intent(db: Session, intent_id: str | None, *, for_update: bool = False) -> SignupIntent:
    if not intent_id:
        raise ValidationError("intent_id is required.")
    q = db.query(SignupIntent).filter(SignupIntent.id == str(intent_id))
    if for_update:
        q = q.with_for_update()
    intent = q.first()
    if not intent:
        raise IntentNotFoundError("Signup not found or expired. Please start signup again.", intent_id=str(intent_id))
    return intent


def read_status(db: Session, intent_id: str) -> SignupIntent:
    """One poll tick as seen by the server: bump the attempt counter and return the intent."""
    intent = get_intent(db, intent_id)
    intent.attempts = (intent.attempts or 0) + 1
    db.flush()
    return intent


def reset_attempts(db: Session, intent_id: str) -> SignupIntent:
    """Explicit user retry: only the counter changes, never the status."""
    intent = get_intent(db, intent_id)
    intent.attempts = 0
    db.flush()
    return intent


def move(db: Session, intent: SignupIntent, dst: IntentStatus, *, trigger: str, meta: dict | None = None):
    old, new = transition(intent, dst, trigger=trigger)
    log_transition(db, intent, old, new, trigger=trigger, meta=meta)
    return old, new


def record_error(db: Session, intent: SignupIntent, message: str, *, trigger: str) -> None:
    """Remember the last failure for support without touching status."""
    intent.last_error = (message or "")[:2000]
    create_log(
        db,
        CATEGORY_FAILED_ATTEMPT,
        "Signup step failed",
        f"Intent {intent.id}: {trigger} failed: {message}",
        intent_id=intent.id,
        actor_email=intent.email,
        meta={"trigger": trigger, "status": intent.status},
    )
