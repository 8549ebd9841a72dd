"""Checkout orchestrator: turns a CREATED intent into an authorized (PAID_READY) one.

Three paths, chosen from the intent alone:
  free trial      -> no processor call, straight to PAID_READY
  inline capture  -> the client already holds a processor token; authorize it and go to PAID_READY
  redirect        -> processor-hosted checkout; CHECKOUT_CREATED until mark_ready confirms it
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from provisioning.config import get_settings
from provisioning.errors import IntentStateError, SignupError, ValidationError
from provisioning.models.signup_intent import SignupIntent
from provisioning.models.signup_payment_method import SignupPaymentMethod
from provisioning.services import gateways as gw
from provisioning.services.intent_store import get_active_plan, move, record_error
from provisioning.services.provider_selector import PaymentProvider, normalize_country
from provisioning.services.state_machine import IntentStatus, RECOVERABLE

logger = logging.getLogger(__name__)

MODE_REDIRECT = "redirect"
MODE_INLINE_READY = "inline-ready"
MODE_FREE_TRIAL = "free-trial"


@dataclass
class CheckoutResult:
    mode: str
    status: IntentStatus
    provider: PaymentProvider
    checkout_url: str | None = None

    @property
    def is_paid_ready(self) -> bool:
        return self.mode == MODE_INLINE_READY

    @property
    def is_free_trial(self) -> bool:
        return self.mode == MODE_FREE_TRIAL


def _result(intent: SignupIntent, mode: str) -> CheckoutResult:
    return CheckoutResult(
        mode=mode,
        status=intent.status,
        provider=intent.payment_provider,
        checkout_url=intent.checkout_url if mode == MODE_REDIRECT else None,
    )


def _fail(db: Session, intent: SignupIntent, exc: SignupError, *, trigger: str) -> SignupError:
    """Keep the intent where it was, remember why, and hand back the error to raise."""
    record_error(db, intent, exc.message, trigger=trigger)
    db.commit()
    logger.warning("[Checkout] %s failed for intent %s: %s", trigger, intent.id, exc.message)
    return exc.with_intent(intent.id)


def create_setup(gateway: gw.PaymentGateway, email: str, full_name: str | None) -> gw.SetupSecret:
    """Redirect/iframe processors only: a setup object whose client secret drives the card widget."""
    if not (email or "").strip():
        raise ValidationError("email is required.")
    return gateway.create_setup(email.strip().lower(), full_name)


def save_payment_method(
    db: Session,
    gateway: gw.PaymentGateway,
    *,
    email: str,
    full_name: str | None,
    billing_country: str,
    provider: PaymentProvider,
    payment_method_ref: str,
    brand: str | None = None,
    last4: str | None = None,
    exp_month: int | None = None,
    exp_year: int | None = None,
) -> SignupPaymentMethod:
    """Stage a captured payment method by email until finalize links it to the new company."""
    ref = (payment_method_ref or "").strip()
    if not (email or "").strip() or not ref or not (billing_country or "").strip():
        raise ValidationError("email, billing_country and payment_method_ref are required.")
    if not (brand and last4):
        details = gateway.describe_payment_method(ref)
        if details:
            brand = brand or details.brand
            last4 = last4 or details.last4
            exp_month = exp_month or details.exp_month
            exp_year = exp_year or details.exp_year
    row = SignupPaymentMethod(
        email=email.strip().lower(),
        name=(full_name or "").strip() or None,
        billing_country=normalize_country(billing_country),
        provider=provider,
        payment_method_ref=ref,
        brand=brand,
        last4=(last4 or "")[-4:] or None,
        exp_month=exp_month,
        exp_year=exp_year,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("[Checkout] Staged %s payment method %s for %s", provider.value, gw.mask_ref(ref), row.email)
    return row


def start_checkout(
    db: Session,
    intent: SignupIntent,
    gateway: gw.PaymentGateway,
    *,
    success_url: str,
    cancel_url: str,
    payment_method_ref: str | None = None,
) -> CheckoutResult:
    status = intent.status
    if status == IntentStatus.FINALIZED:
        raise IntentStateError("This signup is already complete.", intent_id=intent.id)
    if status == IntentStatus.PAID_READY:
        return _result(intent, MODE_FREE_TRIAL if intent.trial_days and not intent.payment_method_ref else MODE_INLINE_READY)
    if status == IntentStatus.CHECKOUT_CREATED and intent.checkout_url and payment_method_ref is None:
        # Reload or double submit: same checkout, no new processor object
        return _result(intent, MODE_REDIRECT)

    settings = get_settings()
    plan = get_active_plan(db, intent.plan_id)
    if plan.is_free_trial:
        if status in RECOVERABLE or status == IntentStatus.CHECKOUT_CREATED:
            raise IntentStateError("Free-trial signups have no checkout to restart.", intent_id=intent.id)
        intent.trial_days = settings.free_trial_days
        move(db, intent, IntentStatus.PAID_READY, trigger="free trial")
        db.commit()
        logger.info("[Checkout] Intent %s is a free trial (%s days), no processor involved", intent.id, intent.trial_days)
        return _result(intent, MODE_FREE_TRIAL)

    if payment_method_ref is not None:
        token = payment_method_ref.strip()
        if not token:
            raise ValidationError("payment_method_ref must not be empty.", intent_id=intent.id)
        intent.payment_method_ref = token
    if intent.payment_method_ref:
        return _authorize_inline(db, intent, gateway)

    try:
        session = gateway.create_checkout(intent, success_url=success_url, cancel_url=cancel_url)
    except SignupError as e:
        raise _fail(db, intent, e, trigger="create checkout")
    intent.checkout_url = session.checkout_url
    intent.checkout_session_id = session.session_id
    if session.external_reference:
        intent.external_reference = session.external_reference
    intent.last_error = None
    move(db, intent, IntentStatus.CHECKOUT_CREATED, trigger="checkout requested")
    db.commit()
    logger.info("[Checkout] Intent %s redirect checkout created via %s", intent.id, intent.payment_provider.value)
    return _result(intent, MODE_REDIRECT)


def _authorize_inline(db: Session, intent: SignupIntent, gateway: gw.PaymentGateway) -> CheckoutResult:
    token = intent.payment_method_ref
    try:
        auth = gateway.authorize_inline(intent, token)
    except SignupError as e:
        intent.payment_method_ref = None
        raise _fail(db, intent, e, trigger="authorize payment method")
    intent.payment_method_ref = auth.payment_method_ref
    if auth.external_reference:
        intent.external_reference = auth.external_reference
    intent.last_error = None
    if intent.payment_provider == PaymentProvider.stripe and intent.status == IntentStatus.CREATED:
        # Stripe attaches to a customer first: record the checkout step before authorization
        move(db, intent, IntentStatus.CHECKOUT_CREATED, trigger="customer created")
    move(db, intent, IntentStatus.PAID_READY, trigger="payment method captured inline", meta={"ref": gw.mask_ref(token)})
    db.commit()
    logger.info("[Checkout] Intent %s authorized inline with %s", intent.id, gw.mask_ref(token))
    return _result(intent, MODE_INLINE_READY)


def mark_ready(
    db: Session,
    intent: SignupIntent,
    gateway: gw.PaymentGateway,
    external_session_id: str | None = None,
) -> IntentStatus:
    """Confirm a redirect checkout with the processor and, when confirmed, move to PAID_READY."""
    if intent.status in (IntentStatus.PAID_READY, IntentStatus.FINALIZED):
        return intent.status
    if intent.status not in (IntentStatus.CHECKOUT_CREATED, *RECOVERABLE):
        raise IntentStateError(f"No checkout to confirm (status {intent.status.value}).", intent_id=intent.id)
    if intent.status in RECOVERABLE and not (intent.checkout_session_id or intent.external_reference or external_session_id):
        raise IntentStateError("No checkout to confirm; start checkout again.", intent_id=intent.id)

    try:
        confirmation = gateway.confirm_checkout(intent, external_session_id)
    except SignupError as e:
        raise _fail(db, intent, e, trigger="mark ready")

    if confirmation.state == gw.CONFIRMED:
        intent.payment_method_ref = confirmation.payment_method_ref
        if confirmation.external_reference:
            intent.external_reference = confirmation.external_reference
        if external_session_id and intent.payment_provider == PaymentProvider.stripe:
            intent.checkout_session_id = external_session_id
        intent.last_error = None
        move(db, intent, IntentStatus.PAID_READY, trigger="external confirmation received")
        db.commit()
        logger.info("[Checkout] Intent %s confirmed by %s", intent.id, intent.payment_provider.value)
    elif confirmation.state == gw.FAILED:
        intent.last_error = confirmation.reason
        move(db, intent, IntentStatus.ERROR, trigger="checkout failed", meta={"reason": confirmation.reason})
        db.commit()
        logger.warning("[Checkout] Intent %s checkout failed: %s", intent.id, confirmation.reason)
    return intent.status
