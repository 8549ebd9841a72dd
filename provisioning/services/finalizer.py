"""Finalize signup: turn a PAID_READY intent into a tenant (user + company + subscription), exactly once.

The intent's linked_company_id is the idempotency marker. It is claimed with a guarded UPDATE
(``WHERE linked_company_id IS NULL``) in the same transaction that creates the tenant, so two racing
finalize calls (two tabs, a reload) produce one company and both callers get its id back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from provisioning.errors import IntentStateError, ValidationError
from provisioning.models.company import (
    Company,
    CompanyPaymentMethod,
    CompanyRole,
    CompanyUser,
    Subscription,
    SubscriptionStatus,
)
from provisioning.models.signup_intent import SignupIntent
from provisioning.models.signup_payment_method import SignupPaymentMethod
from provisioning.models.user import User
from provisioning.services.audit_log import create_log, log_transition, CATEGORY_FINALIZE
from provisioning.services.auth import check_password_rules, hash_password, issue_owner_token, password_matches
from provisioning.services.intent_store import get_intent, record_error
from provisioning.services.notifications import send_company_welcome_email
from provisioning.services.provider_selector import PaymentProvider
from provisioning.services.state_machine import IntentStatus, can_transition

logger = logging.getLogger(__name__)

DEFAULT_COMPANY_NAME = "New company"


@dataclass
class FinalizeResult:
    company: Company
    already_finalized: bool
    user: User | None = None
    access_token: str | None = None


def _owner_of(db: Session, company: Company, email: str) -> User | None:
    return (
        db.query(User)
        .join(CompanyUser, CompanyUser.user_id == User.id)
        .filter(CompanyUser.company_id == company.id, User.email == email)
        .first()
    )


def _already_finalized(db: Session, intent: SignupIntent, password: str | None) -> FinalizeResult:
    """Replay: no writes, same company. A token is issued only if the password matches the owner's."""
    company = db.query(Company).filter(Company.id == intent.linked_company_id).first()
    if company is None:
        raise IntentStateError("Signup was finalized but its company no longer exists.", intent_id=intent.id)
    user = _owner_of(db, company, intent.email)
    token = None
    if user and password_matches(password, user.hashed_password):
        token = issue_owner_token(user.id, user.email, company.id)
    logger.info("[Finalize] Intent %s already finalized as company %s; returning it", intent.id, company.id)
    return FinalizeResult(company=company, already_finalized=True, user=user, access_token=token)


def _build_subscription(intent: SignupIntent, company: Company, now: datetime) -> Subscription:
    free_trial = bool(intent.trial_days) and not intent.payment_method_ref
    provider = None if free_trial else intent.payment_provider
    customer_id = intent.external_reference if provider == PaymentProvider.stripe else None
    subscription_id = intent.external_reference if provider == PaymentProvider.mercadopago else None
    return Subscription(
        company_id=company.id,
        plan_id=intent.plan_id,
        provider=provider,
        provider_customer_id=customer_id,
        provider_subscription_id=subscription_id,
        status=SubscriptionStatus.trialing if intent.trial_days else SubscriptionStatus.active,
        trial_ends_at=now + timedelta(days=intent.trial_days) if intent.trial_days else None,
        amount_usd=intent.amount_usd or 0,
        amount_ars=intent.amount_ars,
        fx_rate_usd_ars=intent.fx_rate_usd_ars,
        modules=list(intent.modules or []),
    )


def _link_payment_method(db: Session, intent: SignupIntent, company: Company) -> CompanyPaymentMethod | None:
    """Staged card from signup (newest unlinked for this email) wins; else the intent's own reference."""
    staged = (
        db.query(SignupPaymentMethod)
        .filter(
            SignupPaymentMethod.email == intent.email,
            SignupPaymentMethod.provider == intent.payment_provider,
            SignupPaymentMethod.linked_company_id.is_(None),
        )
        .order_by(SignupPaymentMethod.created_at.desc(), SignupPaymentMethod.id.desc())
        .first()
    )
    if staged:
        method = CompanyPaymentMethod(
            company_id=company.id,
            provider=staged.provider,
            payment_method_ref=staged.payment_method_ref,
            brand=staged.brand,
            last4=staged.last4,
            exp_month=staged.exp_month,
            exp_year=staged.exp_year,
            holder_name=staged.name,
            is_default=True,
        )
        staged.linked_company_id = company.id
    elif intent.payment_method_ref:
        method = CompanyPaymentMethod(
            company_id=company.id,
            provider=intent.payment_provider,
            payment_method_ref=intent.payment_method_ref,
            holder_name=intent.full_name,
            is_default=True,
        )
    else:
        return None
    db.add(method)
    return method


def finalize_signup(db: Session, intent_id: str, password: str | None) -> FinalizeResult:
    intent = get_intent(db, intent_id)
    if intent.linked_company_id:
        return _already_finalized(db, intent, password)
    if intent.status != IntentStatus.PAID_READY or not can_transition(intent.status, IntentStatus.FINALIZED):
        raise IntentStateError(
            f"Payment authorization is not confirmed yet (status {intent.status.value}).",
            intent_id=intent.id,
        )
    check_password_rules(password, intent.id)

    now = datetime.now(timezone.utc)
    intent_key = intent.id
    try:
        user = User(email=intent.email, hashed_password=hash_password(password), full_name=intent.full_name)
        db.add(user)
        db.flush()

        company = Company(
            name=intent.company_name or intent.full_name or DEFAULT_COMPANY_NAME,
            email=intent.email,
            plan_id=intent.plan_id,
            modules=list(intent.modules or []),
            active=True,
        )
        db.add(company)
        db.flush()

        db.add(CompanyUser(company_id=company.id, user_id=user.id, role=CompanyRole.admin, active=True))
        db.add(_build_subscription(intent, company, now))
        _link_payment_method(db, intent, company)
        db.flush()

        claimed = (
            db.query(SignupIntent)
            .filter(
                SignupIntent.id == intent_key,
                SignupIntent.linked_company_id.is_(None),
                SignupIntent.status == IntentStatus.PAID_READY,
            )
            .update(
                {
                    SignupIntent.linked_company_id: company.id,
                    SignupIntent.status: IntentStatus.FINALIZED,
                    SignupIntent.finalized_at: now,
                    SignupIntent.updated_at: now,
                    SignupIntent.last_error: None,
                },
                synchronize_session=False,
            )
        )
    except IntegrityError:
        db.rollback()
        return _after_conflict(db, intent_key, password, reason="duplicate email")

    if claimed != 1:
        # Another finalize won between our read and our update
        db.rollback()
        return _after_conflict(db, intent_key, password, reason="lost finalize race")

    db.refresh(intent)
    log_transition(db, intent, IntentStatus.PAID_READY, IntentStatus.FINALIZED, trigger="finalize succeeded")
    create_log(
        db,
        CATEGORY_FINALIZE,
        "Tenant created",
        f"Company {company.id} ({company.name}) created for {intent.email} from intent {intent.id}.",
        intent_id=intent.id,
        company_id=company.id,
        actor_email=intent.email,
        meta={"plan_id": intent.plan_id, "modules": intent.modules, "provider": intent.payment_provider},
    )
    db.commit()
    db.refresh(company)
    db.refresh(user)
    logger.info("[Finalize] Intent %s finalized: company=%s user=%s", intent.id, company.id, user.id)

    send_company_welcome_email(user.email, user.full_name, company.name, trial_days=intent.trial_days or 0)
    token = issue_owner_token(user.id, user.email, company.id)
    return FinalizeResult(company=company, already_finalized=False, user=user, access_token=token)


def _after_conflict(db: Session, intent_id: str, password: str | None, *, reason: str) -> FinalizeResult:
    """Re-read after a rolled-back attempt: either someone else linked the company, or the failure is ours."""
    db.expire_all()
    intent = get_intent(db, intent_id)
    if intent.linked_company_id:
        return _already_finalized(db, intent, password)
    if reason == "duplicate email":
        message = "An account with this email already exists. Sign in instead, or use another email."
        record_error(db, intent, message, trigger="finalize")
        db.commit()
        logger.warning("[Finalize] Intent %s: %s", intent_id, message)
        raise ValidationError(message, intent_id=intent_id)
    raise IntentStateError(f"Signup could not be finalized ({reason}); retry.", intent_id=intent_id)
