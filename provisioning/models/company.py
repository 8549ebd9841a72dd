"""Tenant records: company, membership, subscription and saved payment methods."""
import enum

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from provisioning.database import Base, json_column_type
from provisioning.services.provider_selector import PaymentProvider


class CompanyRole(str, enum.Enum):
    admin = "admin"
    member = "member"


class SubscriptionStatus(str, enum.Enum):
    trialing = "trialing"
    active = "active"


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)
    modules = Column(json_column_type(), nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("CompanyUser", back_populates="company", cascade="all, delete-orphan")
    subscription = relationship("Subscription", back_populates="company", uselist=False, cascade="all, delete-orphan")
    payment_methods = relationship("CompanyPaymentMethod", back_populates="company", cascade="all, delete-orphan")


class CompanyUser(Base):
    __tablename__ = "company_users"
    __table_args__ = (UniqueConstraint("company_id", "user_id", name="uq_company_users_company_user"),)

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(SQLEnum(CompanyRole), nullable=False, default=CompanyRole.admin)
    active = Column(Boolean, nullable=False, default=True)

    company = relationship("Company", back_populates="members")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, unique=True)
    plan_id = Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)
    provider = Column(SQLEnum(PaymentProvider), nullable=True)  # null for free trials
    provider_customer_id = Column(String(255), nullable=True)
    provider_subscription_id = Column(String(255), nullable=True)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False)
    trial_ends_at = Column(DateTime(timezone=True), nullable=True)
    amount_usd = Column(Numeric(12, 2), nullable=False, default=0)
    amount_ars = Column(Numeric(14, 2), nullable=True)
    fx_rate_usd_ars = Column(Numeric(14, 4), nullable=True)
    modules = Column(json_column_type(), nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="subscription")


class CompanyPaymentMethod(Base):
    __tablename__ = "company_payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(SQLEnum(PaymentProvider), nullable=False)
    payment_method_ref = Column(String(255), nullable=False)
    brand = Column(String(50), nullable=True)
    last4 = Column(String(4), nullable=True)
    exp_month = Column(Integer, nullable=True)
    exp_year = Column(Integer, nullable=True)
    holder_name = Column(String(255), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="payment_methods")
