"""Signup intent: durable record of one in-progress signup / payment authorization."""
import uuid

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func

from provisioning.database import Base, json_column_type
from provisioning.services.provider_selector import PaymentProvider
from provisioning.services.state_machine import IntentStatus


def _new_intent_id() -> str:
    return str(uuid.uuid4())


class SignupIntent(Base):
    __tablename__ = "signup_intents"

    id = Column(String(36), primary_key=True, default=_new_intent_id)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)
    modules = Column(json_column_type(), nullable=False, default=list)

    # Fixed once checkout starts; provider is derived from it exactly once
    billing_country = Column(String(8), nullable=False)
    payment_provider = Column(SQLEnum(PaymentProvider), nullable=False)
    payment_method_ref = Column(String(255), nullable=True)

    status = Column(SQLEnum(IntentStatus), nullable=False, default=IntentStatus.CREATED, index=True)
    attempts = Column(Integer, nullable=False, default=0)

    # Processor-side handles (Stripe checkout session / customer, MercadoPago preapproval)
    checkout_session_id = Column(String(255), nullable=True, index=True)
    checkout_url = Column(Text, nullable=True)
    external_reference = Column(String(255), nullable=True)

    # Server-side quote
    amount_usd = Column(Numeric(12, 2), nullable=True)
    amount_ars = Column(Numeric(14, 2), nullable=True)
    fx_rate_usd_ars = Column(Numeric(14, 4), nullable=True)
    fx_rate_at = Column(DateTime(timezone=True), nullable=True)
    trial_days = Column(Integer, nullable=False, default=0)

    last_error = Column(Text, nullable=True)

    # Idempotency marker: null -> non-null exactly once, by the finalizer
    linked_company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, unique=True)
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
