"""Subscription plans offered in the signup wizard."""
from sqlalchemy import Column, String, Numeric, Boolean, Text

from provisioning.database import Base


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)  # USD / month
    billing_period = Column(String(20), nullable=False, default="monthly")
    # Free-trial plans skip the processor entirely
    is_free_trial = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
