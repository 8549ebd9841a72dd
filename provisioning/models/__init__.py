"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from provisioning.models.plan import SubscriptionPlan
from provisioning.models.user import User
from provisioning.models.company import Company, CompanyUser, Subscription, CompanyPaymentMethod, CompanyRole, SubscriptionStatus
from provisioning.models.signup_intent import SignupIntent
from provisioning.models.signup_payment_method import SignupPaymentMethod
from provisioning.models.audit_log import AuditLog

__all__ = [
    "SubscriptionPlan",
    "User",
    "Company",
    "CompanyUser",
    "Subscription",
    "CompanyPaymentMethod",
    "CompanyRole",
    "SubscriptionStatus",
    "SignupIntent",
    "SignupPaymentMethod",
    "AuditLog",
]
