"""
Pytest fixtures for the signup provisioning service.

In-memory SQLite shared across sessions (StaticPool), fake processor gateways in place of Stripe and
MercadoPago, and a TestClient with get_db / get_gateways overridden.
"""
import os

# Settings are cached on first import; configure before anything from provisioning loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RETENTION_CRON_ENABLED"] = "false"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["FX_RATE_URL"] = ""
os.environ["DEFAULT_USD_ARS_RATE"] = "1000"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_PUBLISHABLE_KEY"] = ""
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = ""

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from provisioning.database import Base, get_db
from provisioning.dependencies import get_gateways
from provisioning.errors import ProviderError
from provisioning.main import app
from provisioning.seed import seed_plans
from provisioning.services.gateways import (
    CONFIRMED,
    Authorization,
    CardDetails,
    CheckoutSession,
    Confirmation,
    GatewayRegistry,
    PaymentGateway,
    SetupSecret,
)
from provisioning.services.provider_selector import PaymentProvider

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


class FakeGateway(PaymentGateway):
    """Records calls; behaviour is switched per test through plain attributes."""

    def __init__(self, provider: PaymentProvider):
        self.provider = provider
        self.calls: list[str] = []
        self.decline: str | None = None
        self.checkout_error: Exception | None = None
        self.confirm_error: Exception | None = None
        self.confirm_state = CONFIRMED
        self.checkouts = 0

    def create_setup(self, email, full_name):
        self.calls.append("create_setup")
        if self.provider != PaymentProvider.stripe:
            return super().create_setup(email, full_name)
        return SetupSecret(client_secret="seti_test_secret", setup_intent_id="seti_test")

    def create_checkout(self, intent, *, success_url, cancel_url):
        self.calls.append("create_checkout")
        if self.checkout_error:
            raise self.checkout_error
        self.checkouts += 1
        if self.provider == PaymentProvider.stripe:
            return CheckoutSession(
                checkout_url=f"https://checkout.stripe.test/c/{intent.id}",
                session_id=f"cs_test_{self.checkouts}",
            )
        return CheckoutSession(
            checkout_url=f"https://www.mercadopago.test/preapproval/{intent.id}",
            external_reference=f"preapproval_{self.checkouts}",
        )

    def authorize_inline(self, intent, payment_method_ref):
        self.calls.append("authorize_inline")
        if self.decline:
            raise ProviderError(self.decline, intent_id=intent.id)
        ref = "cus_test" if self.provider == PaymentProvider.stripe else "preapproval_inline"
        return Authorization(payment_method_ref=payment_method_ref, external_reference=ref)

    def confirm_checkout(self, intent, external_session_id=None):
        self.calls.append("confirm_checkout")
        if self.confirm_error:
            raise self.confirm_error
        if self.confirm_state != CONFIRMED:
            return Confirmation(state=self.confirm_state, reason="declined at checkout")
        return Confirmation(state=CONFIRMED, payment_method_ref="pm_from_checkout", external_reference="cus_checkout")

    def describe_payment_method(self, payment_method_ref):
        return CardDetails(brand="visa", last4="4242", exp_month=12, exp_year=2030)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_plans(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def stripe_gateway():
    return FakeGateway(PaymentProvider.stripe)


@pytest.fixture
def mercadopago_gateway():
    return FakeGateway(PaymentProvider.mercadopago)


@pytest.fixture
def gateways(stripe_gateway, mercadopago_gateway):
    return GatewayRegistry([stripe_gateway, mercadopago_gateway])


@pytest.fixture
def client(db, session_factory, gateways):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateways] = lambda: gateways
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def create_intent(client):
    """POST /signup/intents with sensible defaults; returns the response body."""

    def _create(**overrides):
        body = {
            "email": "owner@acme.com",
            "full_name": "Ada Owner",
            "company_name": "Acme",
            "plan_id": "basic",
            "modules": ["crm", "billing"],
            "billing_country": "US",
        }
        body.update(overrides)
        r = client.post("/signup/intents", json=body)
        assert r.status_code == 200, r.text
        return r.json()

    return _create
