"""Intent creation, checkout modes and confirmation over HTTP."""
from decimal import Decimal

from provisioning.config import get_settings
from provisioning.errors import NetworkError
from provisioning.models import AuditLog, SignupIntent, SignupPaymentMethod
from provisioning.services import intent_store
from provisioning.services.gateways import FAILED, PENDING


def _status(client, intent_id):
    r = client.post("/signup/intents/status", json={"intent_id": intent_id})
    assert r.status_code == 200, r.text
    return r.json()


def _transitions(db, intent_id):
    logs = (
        db.query(AuditLog)
        .filter(AuditLog.intent_id == intent_id, AuditLog.category == "status_change")
        .order_by(AuditLog.id)
        .all()
    )
    return [a.meta["new_status"] for a in logs if a.meta and "new_status" in a.meta]


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_plans_listed(client):
    r = client.get("/plans")
    assert r.status_code == 200
    ids = [p["id"] for p in r.json()]
    assert ids == ["free", "basic", "pro"]


def test_create_intent_prices_and_selects_provider(create_intent):
    out = create_intent()
    assert out["status"] == "CREATED"
    assert out["payment_provider"] == "stripe"
    # basic 29 + 2 modules x 10
    assert Decimal(str(out["amount_usd"])) == Decimal("49.00")
    assert out["amount_ars"] is None


def test_create_intent_ar_uses_mercadopago_with_ars_quote(create_intent):
    out = create_intent(billing_country="ar")
    assert out["payment_provider"] == "mercadopago"
    assert Decimal(str(out["amount_ars"])) == Decimal("49000.00")


def test_create_intent_rejects_mismatched_provider(client):
    r = client.post("/signup/intents", json={
        "email": "x@acme.com", "plan_id": "basic", "billing_country": "AR", "provider": "stripe",
    })
    assert r.status_code == 400
    assert r.json()["code"] == "validation"


def test_create_intent_missing_fields(client):
    r = client.post("/signup/intents", json={"email": "x@acme.com", "plan_id": "basic"})
    assert r.status_code == 422
    assert r.json()["code"] == "validation"


def test_create_intent_unknown_plan(client):
    r = client.post("/signup/intents", json={"email": "x@acme.com", "plan_id": "gold", "billing_country": "US"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid or inactive plan."


def test_scenario_inline_mercadopago_goes_straight_to_paid_ready(client, create_intent, mercadopago_gateway, db):
    intent = create_intent(billing_country="AR")
    r = client.post("/signup/checkout", json={"intent_id": intent["intent_id"], "payment_method_ref": "tok_ar_123"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["mode"] == "inline-ready"
    assert body["is_paid_ready"] is True
    assert body["status"] == "PAID_READY"
    assert mercadopago_gateway.calls == ["authorize_inline"]

    row = db.query(SignupIntent).filter(SignupIntent.id == intent["intent_id"]).one()
    assert row.payment_method_ref == "tok_ar_123"
    assert _transitions(db, row.id) == ["PAID_READY"]


def test_scenario_inline_stripe_records_checkout_step(client, create_intent, stripe_gateway, db):
    intent = create_intent()
    r = client.post("/signup/checkout", json={"intent_id": intent["intent_id"], "payment_method_ref": "pm_card_visa"})
    body = r.json()
    assert body["mode"] == "inline-ready"
    assert body["status"] == "PAID_READY"
    assert _transitions(db, intent["intent_id"]) == ["CHECKOUT_CREATED", "PAID_READY"]


def test_scenario_redirect_then_mark_ready(client, create_intent, stripe_gateway):
    intent = create_intent()
    iid = intent["intent_id"]
    r = client.post("/signup/checkout", json={"intent_id": iid})
    body = r.json()
    assert body["mode"] == "redirect"
    assert body["checkout_url"].endswith(iid)
    assert body["status"] == "CHECKOUT_CREATED"
    assert _status(client, iid)["status"] == "CHECKOUT_CREATED"

    r = client.post("/signup/intents/ready", json={"intent_id": iid, "external_session_id": "cs_test_1"})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "PAID_READY"
    assert _status(client, iid)["status"] == "PAID_READY"


def test_checkout_is_reused_on_reload(client, create_intent, stripe_gateway):
    iid = create_intent()["intent_id"]
    first = client.post("/signup/checkout", json={"intent_id": iid}).json()
    second = client.post("/signup/checkout", json={"intent_id": iid}).json()
    assert first["checkout_url"] == second["checkout_url"]
    assert stripe_gateway.checkouts == 1


def test_free_trial_needs_no_processor(client, create_intent, stripe_gateway):
    iid = create_intent(plan_id="free", modules=[])["intent_id"]
    body = client.post("/signup/checkout", json={"intent_id": iid}).json()
    assert body["mode"] == "free-trial"
    assert body["is_free_trial"] is True
    assert body["status"] == "PAID_READY"
    assert stripe_gateway.calls == []


def test_declined_card_leaves_status_and_is_retryable(client, create_intent, stripe_gateway, db):
    iid = create_intent()["intent_id"]
    stripe_gateway.decline = "Your card was declined."
    r = client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "pm_declined"})
    assert r.status_code == 402
    assert r.json() == {"detail": "Your card was declined.", "code": "provider", "intent_id": iid}
    assert _status(client, iid)["status"] == "CREATED"
    row = db.query(SignupIntent).filter(SignupIntent.id == iid).one()
    assert row.last_error == "Your card was declined."
    assert row.payment_method_ref is None

    stripe_gateway.decline = None
    r = client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "pm_card_visa"})
    assert r.json()["status"] == "PAID_READY"


def test_empty_inline_token_is_rejected(client, create_intent):
    iid = create_intent()["intent_id"]
    r = client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "  "})
    assert r.status_code == 400
    assert r.json()["intent_id"] == iid


def test_mark_ready_network_failure_keeps_status(client, create_intent, stripe_gateway):
    iid = create_intent()["intent_id"]
    client.post("/signup/checkout", json={"intent_id": iid})
    stripe_gateway.confirm_error = NetworkError("Stripe unreachable")
    r = client.post("/signup/intents/ready", json={"intent_id": iid, "external_session_id": "cs_test_1"})
    assert r.status_code == 503
    assert r.json()["code"] == "network"
    assert _status(client, iid)["status"] == "CHECKOUT_CREATED"


def test_mark_ready_pending_and_failed(client, create_intent, stripe_gateway):
    iid = create_intent()["intent_id"]
    client.post("/signup/checkout", json={"intent_id": iid})
    stripe_gateway.confirm_state = PENDING
    assert client.post("/signup/intents/ready", json={"intent_id": iid}).json()["status"] == "CHECKOUT_CREATED"
    stripe_gateway.confirm_state = FAILED
    assert client.post("/signup/intents/ready", json={"intent_id": iid}).json()["status"] == "ERROR"

    # New checkout recovers from ERROR without going back to CREATED
    stripe_gateway.confirm_state = "confirmed"
    body = client.post("/signup/checkout", json={"intent_id": iid}).json()
    assert body["status"] == "CHECKOUT_CREATED"
    assert stripe_gateway.checkouts == 2


def test_mark_ready_before_checkout_is_invalid_state(client, create_intent):
    iid = create_intent()["intent_id"]
    r = client.post("/signup/intents/ready", json={"intent_id": iid})
    assert r.status_code == 409
    assert r.json()["code"] == "invalid_state"


def test_status_counts_attempts_and_retry_resets(client, create_intent):
    iid = create_intent()["intent_id"]
    _status(client, iid)
    assert _status(client, iid)["attempts"] == 2
    r = client.post(f"/signup/intents/{iid}/retry")
    assert r.json() == {"intent_id": iid, "status": "CREATED", "attempts": 0}


def test_unknown_intent_is_not_found(client):
    r = client.post("/signup/intents/status", json={"intent_id": "does-not-exist"})
    assert r.status_code == 404
    assert r.json()["code"] == "intent_not_found"


def test_setup_and_staged_payment_method(client, db, stripe_gateway):
    r = client.post("/signup/setup", json={"email": "owner@acme.com", "billing_country": "US"})
    assert r.json() == {"client_secret": "seti_test_secret", "setup_intent_id": "seti_test", "publishable_key": None}

    r = client.post("/signup/payment-methods", json={
        "email": "Owner@Acme.com", "billing_country": "US", "payment_method_ref": "pm_card_visa",
    })
    assert r.status_code == 200, r.text
    assert r.json()["last4"] == "4242"
    assert r.json()["brand"] == "visa"
    row = db.query(SignupPaymentMethod).one()
    assert row.email == "owner@acme.com"


def test_setup_not_offered_for_mercadopago(client):
    r = client.post("/signup/setup", json={"email": "owner@acme.com", "billing_country": "AR"})
    assert r.status_code == 400


def test_setup_hands_out_publishable_key(client, monkeypatch):
    monkeypatch.setattr(get_settings(), "stripe_publishable_key", "pk_test_123")
    r = client.post("/signup/setup", json={"email": "owner@acme.com", "billing_country": "US"})
    assert r.status_code == 200, r.text
    assert r.json()["publishable_key"] == "pk_test_123"


def test_checkout_and_confirmation_lock_the_intent_row(client, create_intent, monkeypatch):
    seen = []
    real_get_intent = intent_store.get_intent

    def recording_get_intent(db, intent_id, *, for_update=False):
        seen.append(for_update)
        return real_get_intent(db, intent_id, for_update=for_update)

    monkeypatch.setattr(intent_store, "get_intent", recording_get_intent)
    iid = create_intent()["intent_id"]
    r = client.post("/signup/checkout", json={"intent_id": iid})
    assert r.status_code == 200, r.text
    r = client.post("/signup/intents/ready", json={"intent_id": iid, "external_session_id": "cs_test_1"})
    assert r.status_code == 200, r.text
    assert seen == [True, True]


def test_double_submit_authorizes_once(client, create_intent, mercadopago_gateway):
    iid = create_intent(billing_country="AR")["intent_id"]
    first = client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "tok_1"})
    second = client.post("/signup/checkout", json={"intent_id": iid, "payment_method_ref": "tok_1"})
    assert first.status_code == 200 and second.status_code == 200
    assert second.json()["is_paid_ready"] is True
    assert mercadopago_gateway.calls.count("authorize_inline") == 1


def test_audit_trail_keeps_plain_values(client, db):
    r = client.post(
        "/signup/intents",
        json={"email": "owner@acme.com", "plan_id": "basic", "billing_country": "US", "modules": ["crm"]},
        headers={"User-Agent": "w" * 600},
    )
    iid = r.json()["intent_id"]
    created = db.query(AuditLog).filter(AuditLog.intent_id == iid).one()
    assert created.meta == {"billing_country": "US", "modules": ["crm"]}
    assert len(created.user_agent) == 500

    client.post("/signup/checkout", json={"intent_id": iid})
    assert _transitions(db, iid) == ["CHECKOUT_CREATED"]
