"""Seed the plan catalogue (free trial, basic, pro)."""
from decimal import Decimal

from sqlalchemy.orm import Session

from provisioning.models.plan import SubscriptionPlan


def seed_plans(db: Session) -> None:
    if db.query(SubscriptionPlan).count() > 0:
        return
    plans = [
        SubscriptionPlan(
            id="free",
            name="Free trial",
            description="All modules, no card required, for the trial period.",
            price=Decimal("0"),
            billing_period="monthly",
            is_free_trial=True,
        ),
        SubscriptionPlan(
            id="basic",
            name="Basic",
            description="Core workspace for small teams.",
            price=Decimal("29.00"),
            billing_period="monthly",
        ),
        SubscriptionPlan(
            id="pro",
            name="Pro",
            description="Everything in Basic plus priority support.",
            price=Decimal("79.00"),
            billing_period="monthly",
        ),
    ]
    for p in plans:
        db.add(p)
    db.commit()
