"""Signup provisioning: intent, checkout, confirmation and finalize endpoints.

Each handler is one operation of the signup wizard. Domain errors (provisioning.errors) propagate to the
app-level handler, which renders them as {detail, code, intent_id}.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from provisioning.config import get_settings
from provisioning.database import get_db
from provisioning.dependencies import get_gateways
from provisioning.errors import ValidationError
from provisioning.schemas.signup import (
    CheckoutStart,
    CheckoutStarted,
    CompanyResponse,
    FinalizeRequest,
    FinalizeResponse,
    IntentCreate,
    IntentCreated,
    IntentRef,
    IntentStatusResponse,
    MarkReadyRequest,
    PaymentMethodSave,
    PaymentMethodSaved,
    SetupRequest,
    SetupResponse,
)
from provisioning.services import checkout, intent_store
from provisioning.services.audit_log import create_log, CATEGORY_STATUS_CHANGE
from provisioning.services.finalizer import finalize_signup
from provisioning.services.gateways import GatewayRegistry
from provisioning.services.provider_selector import PaymentProvider, select_provider

router = APIRouter(prefix="/signup", tags=["signup"])


def _client_meta(request: Request) -> tuple[str | None, str | None]:
    ip = request.client.host if request.client else None
    ua = (request.headers.get("user-agent") or "").strip() or None
    return ip, ua


@router.post("/intents", response_model=IntentCreated)
def create_intent(
    request: Request,
    data: IntentCreate,
    db: Session = Depends(get_db),
):
    intent = intent_store.create_intent(
        db,
        email=data.email,
        full_name=data.full_name,
        company_name=data.company_name,
        plan_id=data.plan_id,
        modules=data.modules,
        billing_country=data.billing_country,
        provider=data.provider.value if data.provider else None,
        payment_method_ref=data.payment_method_ref,
    )
    ip, ua = _client_meta(request)
    create_log(
        db,
        CATEGORY_STATUS_CHANGE,
        "Signup intent CREATED",
        f"Intent {intent.id} created for {intent.email}, plan {intent.plan_id}, provider {intent.payment_provider.value}.",
        intent_id=intent.id,
        actor_email=intent.email,
        ip_address=ip,
        user_agent=ua,
        meta={"billing_country": intent.billing_country, "modules": intent.modules},
    )
    db.commit()
    db.refresh(intent)
    return IntentCreated(
        intent_id=intent.id,
        payment_provider=intent.payment_provider,
        status=intent.status,
        amount_usd=intent.amount_usd,
        amount_ars=intent.amount_ars,
    )


@router.post("/setup", response_model=SetupResponse)
def create_setup(
    data: SetupRequest,
    gateways: GatewayRegistry = Depends(get_gateways),
):
    """Client secret for the processor's embedded card widget (redirect-style processor only)."""
    gateway = gateways.for_provider(select_provider(data.billing_country))
    secret = checkout.create_setup(gateway, data.email, data.full_name)
    return SetupResponse(
        client_secret=secret.client_secret,
        setup_intent_id=secret.setup_intent_id,
        publishable_key=get_settings().stripe_publishable_key or None,
    )


@router.post("/payment-methods", response_model=PaymentMethodSaved)
def save_payment_method(
    data: PaymentMethodSave,
    db: Session = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateways),
):
    provider = select_provider(data.billing_country)
    if data.provider and data.provider != provider:
        raise ValidationError(f"Billing country {data.billing_country} is processed by {provider.value}, not {data.provider.value}.")
    row = checkout.save_payment_method(
        db,
        gateways.for_provider(provider),
        email=data.email,
        full_name=data.full_name,
        billing_country=data.billing_country,
        provider=provider,
        payment_method_ref=data.payment_method_ref,
        brand=data.brand,
        last4=data.last4,
        exp_month=data.exp_month,
        exp_year=data.exp_year,
    )
    return PaymentMethodSaved(id=row.id, last4=row.last4, brand=row.brand)


@router.post("/checkout", response_model=CheckoutStarted)
def start_checkout(
    data: CheckoutStart,
    db: Session = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateways),
):
    settings = get_settings()
    # Row lock serializes double submits so only one reaches the processor
    intent = intent_store.get_intent(db, data.intent_id, for_update=True)
    result = checkout.start_checkout(
        db,
        intent,
        gateways.for_provider(PaymentProvider(intent.payment_provider)),
        success_url=data.success_url or settings.signup_success_url,
        cancel_url=data.cancel_url or settings.signup_cancel_url,
        payment_method_ref=data.payment_method_ref,
    )
    return CheckoutStarted(
        intent_id=intent.id,
        mode=result.mode,
        provider=result.provider,
        status=result.status,
        checkout_url=result.checkout_url,
        is_paid_ready=result.is_paid_ready,
        is_free_trial=result.is_free_trial,
    )


@router.post("/intents/status", response_model=IntentStatusResponse)
def get_intent_status(data: IntentRef, db: Session = Depends(get_db)):
    intent = intent_store.read_status(db, data.intent_id)
    db.commit()
    return IntentStatusResponse(intent_id=intent.id, status=intent.status, attempts=intent.attempts)


@router.post("/intents/ready", response_model=IntentStatusResponse)
def mark_intent_ready(
    data: MarkReadyRequest,
    db: Session = Depends(get_db),
    gateways: GatewayRegistry = Depends(get_gateways),
):
    intent = intent_store.get_intent(db, data.intent_id, for_update=True)
    status = checkout.mark_ready(
        db,
        intent,
        gateways.for_provider(PaymentProvider(intent.payment_provider)),
        external_session_id=(data.external_session_id or "").strip() or None,
    )
    return IntentStatusResponse(intent_id=intent.id, status=status, attempts=intent.attempts)


@router.post("/intents/{intent_id}/retry", response_model=IntentStatusResponse)
def retry_intent(intent_id: str, db: Session = Depends(get_db)):
    """User-triggered retry: resets the poll counter only; status is re-read, never rewound."""
    intent = intent_store.reset_attempts(db, intent_id)
    db.commit()
    return IntentStatusResponse(intent_id=intent.id, status=intent.status, attempts=intent.attempts)


@router.post("/finalize", response_model=FinalizeResponse)
def finalize(data: FinalizeRequest, db: Session = Depends(get_db)):
    result = finalize_signup(db, data.intent_id, data.password)
    return FinalizeResponse(
        intent_id=data.intent_id,
        company=CompanyResponse.model_validate(result.company),
        already_finalized=result.already_finalized,
        access_token=result.access_token,
    )
