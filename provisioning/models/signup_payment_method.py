"""Staging row for a payment method captured during signup, before any company exists.
Linked to the company (linked_company_id) when the signup is finalized."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func

from provisioning.database import Base
from provisioning.services.provider_selector import PaymentProvider


class SignupPaymentMethod(Base):
    __tablename__ = "signup_payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    billing_country = Column(String(8), nullable=False)
    provider = Column(SQLEnum(PaymentProvider), nullable=False)
    payment_method_ref = Column(String(255), nullable=False)

    brand = Column(String(50), nullable=True)
    last4 = Column(String(4), nullable=True)
    exp_month = Column(Integer, nullable=True)
    exp_year = Column(Integer, nullable=True)

    linked_company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
