"""Wire-level behaviour of the real processor gateways, with the processors stubbed out."""
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from provisioning.config import get_settings
from provisioning.errors import NetworkError, ProviderError
from provisioning.services.gateways import MercadoPagoGateway, StripeGateway


def _intent(**overrides):
    values = dict(
        id="intent-1",
        email="owner@acme.com",
        full_name="Ada Owner",
        plan_id="basic",
        amount_usd=Decimal("49.00"),
        amount_ars=Decimal("49000.00"),
        trial_days=0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def mercadopago(monkeypatch):
    """MercadoPagoGateway whose HTTP calls are answered by a handler the test sets."""
    monkeypatch.setattr(get_settings(), "mercadopago_access_token", "TEST-token")
    seen: list[httpx.Request] = []
    state = {"handler": lambda request: httpx.Response(201, json={"id": "pre_1", "status": "authorized"})}

    def handler(request):
        seen.append(request)
        return state["handler"](request)

    real_client = httpx.Client
    monkeypatch.setattr(httpx, "Client", lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw))
    return SimpleNamespace(gateway=MercadoPagoGateway(), requests=seen, state=state)


def test_inline_preapproval_carries_idempotency_key(mercadopago):
    auth = mercadopago.gateway.authorize_inline(_intent(), "tok_1")
    assert auth.external_reference == "pre_1"
    request = mercadopago.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/preapproval"
    assert request.headers["Authorization"] == "Bearer TEST-token"
    assert request.headers["X-Idempotency-Key"] == "signup-intent-1-tok_1"


def test_inline_preapproval_key_is_stable_across_replays(mercadopago):
    mercadopago.gateway.authorize_inline(_intent(), "tok_1")
    mercadopago.gateway.authorize_inline(_intent(), "tok_1")
    keys = {r.headers["X-Idempotency-Key"] for r in mercadopago.requests}
    assert keys == {"signup-intent-1-tok_1"}


def test_status_reads_send_no_idempotency_key(mercadopago):
    mercadopago.state["handler"] = lambda request: httpx.Response(200, json={"id": "pre_1", "status": "pending"})
    mercadopago.gateway.confirm_checkout(_intent(external_reference="pre_1"))
    assert "X-Idempotency-Key" not in mercadopago.requests[0].headers


def test_mercadopago_server_error_is_network_error(mercadopago):
    mercadopago.state["handler"] = lambda request: httpx.Response(502, json={"message": "bad gateway"})
    with pytest.raises(NetworkError):
        mercadopago.gateway.authorize_inline(_intent(), "tok_1")


def test_mercadopago_rejection_is_provider_error(mercadopago):
    mercadopago.state["handler"] = lambda request: httpx.Response(400, json={"message": "card_token_id invalid"})
    with pytest.raises(ProviderError) as exc:
        mercadopago.gateway.authorize_inline(_intent(), "tok_bad")
    assert "card_token_id" in exc.value.message


def test_stripe_setup_checkout_always_creates_customer(monkeypatch):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(url="https://checkout.stripe.com/c/cs_1", id="cs_1")

    fake_stripe = SimpleNamespace(checkout=SimpleNamespace(Session=SimpleNamespace(create=create)))
    monkeypatch.setattr(StripeGateway, "_stripe", lambda self: fake_stripe)

    session = StripeGateway().create_checkout(
        _intent(), success_url="https://app.example.com/signup/success", cancel_url="https://app.example.com/cancel"
    )
    assert session.session_id == "cs_1"
    assert captured["mode"] == "setup"
    assert captured["customer_creation"] == "always"
    assert captured["customer_email"] == "owner@acme.com"
    assert captured["metadata"] == {"intent_id": "intent-1"}
    assert captured["success_url"].endswith("session_id={CHECKOUT_SESSION_ID}")
