"""Signup pipeline request/response schemas."""
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from provisioning.services.provider_selector import PaymentProvider
from provisioning.services.state_machine import IntentStatus


def _strip(v: str | None) -> str | None:
    return v.strip() if isinstance(v, str) else v


class IntentCreate(BaseModel):
    email: EmailStr
    full_name: str | None = None
    company_name: str | None = None
    plan_id: str
    modules: list[str] = Field(default_factory=list)
    billing_country: str
    provider: PaymentProvider | None = None  # optional; must agree with billing_country when sent
    payment_method_ref: str | None = None

    @field_validator("plan_id", "billing_country")
    @classmethod
    def required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("full_name", "company_name", "payment_method_ref")
    @classmethod
    def strip_optional(cls, v: str | None) -> str | None:
        return _strip(v)


class IntentCreated(BaseModel):
    intent_id: str
    payment_provider: PaymentProvider
    status: IntentStatus
    amount_usd: Decimal | None = None
    amount_ars: Decimal | None = None


class SetupRequest(BaseModel):
    email: EmailStr
    full_name: str | None = None
    billing_country: str | None = None


class SetupResponse(BaseModel):
    client_secret: str
    setup_intent_id: str | None = None
    publishable_key: str | None = None


class PaymentMethodSave(BaseModel):
    email: EmailStr
    full_name: str | None = None
    billing_country: str
    provider: PaymentProvider | None = None
    payment_method_ref: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = Field(default=None, ge=1, le=12)
    exp_year: int | None = None


class PaymentMethodSaved(BaseModel):
    id: int
    last4: str | None = None
    brand: str | None = None


class CheckoutStart(BaseModel):
    intent_id: str
    success_url: str | None = None
    cancel_url: str | None = None
    payment_method_ref: str | None = None  # inline-capture token, when the widget produced one


class CheckoutStarted(BaseModel):
    intent_id: str
    mode: str
    provider: PaymentProvider
    status: IntentStatus
    checkout_url: str | None = None
    is_paid_ready: bool = False
    is_free_trial: bool = False


class IntentRef(BaseModel):
    intent_id: str


class IntentStatusResponse(BaseModel):
    intent_id: str
    status: IntentStatus
    attempts: int = 0


class MarkReadyRequest(BaseModel):
    intent_id: str
    external_session_id: str | None = None


class FinalizeRequest(BaseModel):
    intent_id: str
    password: str


class CompanyResponse(BaseModel):
    id: int
    name: str
    email: str
    plan_id: str
    modules: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class FinalizeResponse(BaseModel):
    intent_id: str
    company: CompanyResponse
    already_finalized: bool = False
    access_token: str | None = None
    token_type: str = "bearer"
