"""Payment processor gateways: Stripe and MercadoPago.

Both expose the same small surface so the checkout orchestrator never branches on the processor:
create a setup object, create a redirect checkout, authorize an inline-captured payment method, and
confirm a redirect checkout after the customer comes back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from provisioning.config import get_settings
from provisioning.errors import NetworkError, ProviderError, ProviderUnavailableError, ValidationError, normalize_error
from provisioning.services.provider_selector import PaymentProvider

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
PENDING = "pending"
FAILED = "failed"


@dataclass
class SetupSecret:
    client_secret: str
    setup_intent_id: str | None = None


@dataclass
class CheckoutSession:
    checkout_url: str
    session_id: str | None = None
    external_reference: str | None = None


@dataclass
class Authorization:
    payment_method_ref: str
    external_reference: str | None = None


@dataclass
class Confirmation:
    state: str  # confirmed | pending | failed
    payment_method_ref: str | None = None
    external_reference: str | None = None
    reason: str | None = None


@dataclass
class CardDetails:
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None


def mask_ref(ref: str | None) -> str:
    """Tokens are logged by their last four characters only."""
    if not ref:
        return "-"
    return f"...{ref[-4:]}"


def with_session_placeholder(success_url: str, intent_id: str) -> str:
    sep = "&" if "?" in success_url else "?"
    url = success_url
    if "intent_id=" not in url:
        url = f"{url}{sep}intent_id={intent_id}"
        sep = "&"
    return f"{url}{sep}session_id={{CHECKOUT_SESSION_ID}}"


class PaymentGateway:
    provider: PaymentProvider

    def create_setup(self, email: str, full_name: str | None) -> SetupSecret:
        raise ValidationError(f"{self.provider.value} does not use a setup object.")

    def create_checkout(self, intent, *, success_url: str, cancel_url: str) -> CheckoutSession:
        raise NotImplementedError

    def authorize_inline(self, intent, payment_method_ref: str) -> Authorization:
        raise NotImplementedError

    def confirm_checkout(self, intent, external_session_id: str | None = None) -> Confirmation:
        raise NotImplementedError

    def describe_payment_method(self, payment_method_ref: str) -> CardDetails | None:
        return None


class StripeGateway(PaymentGateway):
    provider = PaymentProvider.stripe

    def _stripe(self):
        settings = get_settings()
        if not settings.stripe_secret_key:
            raise ProviderUnavailableError("Stripe is not configured. Set STRIPE_SECRET_KEY in .env.")
        import stripe
        stripe.api_key = settings.stripe_secret_key
        return stripe

    def create_setup(self, email: str, full_name: str | None) -> SetupSecret:
        stripe = self._stripe()
        try:
            setup_intent = stripe.SetupIntent.create(
                payment_method_types=["card"],
                metadata={"email": email, "name": full_name or "", "purpose": "signup"},
            )
        except Exception as e:
            raise normalize_error(e) from e
        return SetupSecret(client_secret=setup_intent.client_secret, setup_intent_id=setup_intent.id)

    def create_checkout(self, intent, *, success_url: str, cancel_url: str) -> CheckoutSession:
        stripe = self._stripe()
        try:
            # Setup mode saves the card without charging; billing starts from the subscription
            session = stripe.checkout.Session.create(
                mode="setup",
                payment_method_types=["card"],
                success_url=with_session_placeholder(success_url, intent.id),
                cancel_url=cancel_url,
                customer_email=intent.email,
                customer_creation="always",
                metadata={"intent_id": intent.id},
            )
        except Exception as e:
            raise normalize_error(e, intent.id) from e
        url = getattr(session, "url", None)
        if not url:
            raise ProviderError("Stripe did not return a checkout URL.", intent_id=intent.id)
        return CheckoutSession(checkout_url=url, session_id=session.id)

    def authorize_inline(self, intent, payment_method_ref: str) -> Authorization:
        stripe = self._stripe()
        try:
            customer = stripe.Customer.create(
                email=intent.email,
                name=intent.full_name or None,
                metadata={"intent_id": intent.id},
                idempotency_key=f"signup_customer_{intent.id}",
            )
            stripe.PaymentMethod.attach(payment_method_ref, customer=customer.id)
            stripe.Customer.modify(
                customer.id,
                invoice_settings={"default_payment_method": payment_method_ref},
            )
        except Exception as e:
            raise normalize_error(e, intent.id) from e
        return Authorization(payment_method_ref=payment_method_ref, external_reference=customer.id)

    def confirm_checkout(self, intent, external_session_id: str | None = None) -> Confirmation:
        session_id = (external_session_id or intent.checkout_session_id or "").strip()
        if not session_id:
            return Confirmation(state=PENDING, reason="No checkout session to confirm yet.")
        stripe = self._stripe()
        try:
            session = stripe.checkout.Session.retrieve(session_id, expand=["setup_intent"])
        except Exception as e:
            raise normalize_error(e, intent.id) from e

        metadata = getattr(session, "metadata", None) or {}
        if metadata.get("intent_id") != intent.id:
            raise ProviderError("This checkout session does not belong to the signup.", intent_id=intent.id)
        if session.status == "expired":
            return Confirmation(state=FAILED, reason="Stripe checkout session expired.")
        if session.status != "complete":
            return Confirmation(state=PENDING)

        setup_intent = session.setup_intent
        try:
            if isinstance(setup_intent, str):
                setup_intent = stripe.SetupIntent.retrieve(setup_intent)
        except Exception as e:
            raise normalize_error(e, intent.id) from e
        pm = getattr(setup_intent, "payment_method", None) if setup_intent else None
        pm_id = pm if isinstance(pm, str) else getattr(pm, "id", None)
        if not pm_id:
            return Confirmation(state=PENDING, reason="Checkout complete but no payment method attached yet.")
        customer = getattr(session, "customer", None)
        customer_id = customer if isinstance(customer, str) else getattr(customer, "id", None)
        return Confirmation(state=CONFIRMED, payment_method_ref=pm_id, external_reference=customer_id)

    def describe_payment_method(self, payment_method_ref: str) -> CardDetails | None:
        stripe = self._stripe()
        try:
            pm = stripe.PaymentMethod.retrieve(payment_method_ref)
        except Exception as e:
            raise normalize_error(e) from e
        card = getattr(pm, "card", None)
        if not card:
            return None
        return CardDetails(brand=card.brand, last4=card.last4, exp_month=card.exp_month, exp_year=card.exp_year)


class MercadoPagoGateway(PaymentGateway):
    provider = PaymentProvider.mercadopago
    TIMEOUT_SECONDS = 15.0

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        intent_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        settings = get_settings()
        token = settings.mercadopago_access_token
        if not token:
            raise ProviderUnavailableError("MercadoPago is not configured. Set MERCADOPAGO_ACCESS_TOKEN in .env.", intent_id=intent_id)
        import httpx

        url = f"{settings.mercadopago_base_url.rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        try:
            with httpx.Client(timeout=self.TIMEOUT_SECONDS) as client:
                r = client.request(method, url, json=json, headers=headers)
        except httpx.TransportError as e:
            logger.warning("[MercadoPago] %s %s transport error: %s", method, path, e)
            raise NetworkError(f"MercadoPago unreachable: {e}", intent_id=intent_id) from e
        try:
            body = r.json()
        except ValueError:
            body = {"message": r.text}
        if r.status_code >= 500:
            logger.warning("[MercadoPago] %s %s returned %s", method, path, r.status_code)
            raise NetworkError(f"MercadoPago error {r.status_code}", intent_id=intent_id)
        if r.status_code >= 400:
            raise ProviderError(str(body.get("message") or "MercadoPago rejected the request."), intent_id=intent_id)
        return body

    def _preapproval_body(self, intent, *, back_url: str) -> dict[str, Any]:
        settings = get_settings()
        amount_ars = intent.amount_ars
        if amount_ars is None:
            amount_ars = float(intent.amount_usd or 0) * settings.default_usd_ars_rate
        start = datetime.now(timezone.utc) + timedelta(days=intent.trial_days or 0)
        return {
            "reason": f"Subscription {intent.plan_id}",
            "payer_email": intent.email,
            "back_url": back_url,
            "external_reference": intent.id,
            "auto_recurring": {
                "frequency": 1,
                "frequency_type": "months",
                "transaction_amount": round(float(amount_ars), 2),
                "currency_id": "ARS",
                "start_date": start.isoformat(),
            },
        }

    def create_checkout(self, intent, *, success_url: str, cancel_url: str) -> CheckoutSession:
        body = self._preapproval_body(intent, back_url=success_url)
        out = self._request("POST", "/preapproval", json=body, intent_id=intent.id)
        url = out.get("init_point") or out.get("sandbox_init_point")
        if not url:
            raise ProviderError("MercadoPago did not return a checkout URL.", intent_id=intent.id)
        return CheckoutSession(checkout_url=url, external_reference=out.get("id"))

    def authorize_inline(self, intent, payment_method_ref: str) -> Authorization:
        body = self._preapproval_body(intent, back_url=get_settings().signup_success_url)
        body["card_token_id"] = payment_method_ref
        body["status"] = "authorized"
        # One key per intent and card token: a replayed submit returns the first preapproval
        out = self._request(
            "POST", "/preapproval", json=body, intent_id=intent.id, idempotency_key=f"signup-{intent.id}-{payment_method_ref}"
        )
        if out.get("status") not in ("authorized", None):
            raise ProviderError(f"MercadoPago did not authorize the card (status {out.get('status')}).", intent_id=intent.id)
        return Authorization(payment_method_ref=payment_method_ref, external_reference=out.get("id"))

    def confirm_checkout(self, intent, external_session_id: str | None = None) -> Confirmation:
        preapproval_id = (intent.external_reference or external_session_id or "").strip()
        if not preapproval_id:
            return Confirmation(state=PENDING, reason="No preapproval to confirm yet.")
        out = self._request("GET", f"/preapproval/{preapproval_id}", intent_id=intent.id)
        status = out.get("status")
        if status == "authorized":
            return Confirmation(state=CONFIRMED, payment_method_ref=preapproval_id, external_reference=preapproval_id)
        if status == "cancelled":
            return Confirmation(state=FAILED, reason="MercadoPago preapproval was cancelled.")
        return Confirmation(state=PENDING)


class GatewayRegistry:
    def __init__(self, gateways: list[PaymentGateway] | None = None):
        self._gateways: dict[PaymentProvider, PaymentGateway] = {}
        for gw in gateways or []:
            self.register(gw)

    def register(self, gateway: PaymentGateway) -> None:
        self._gateways[gateway.provider] = gateway

    def for_provider(self, provider: PaymentProvider | str) -> PaymentGateway:
        gw = self._gateways.get(PaymentProvider(provider))
        if gw is None:
            raise ProviderUnavailableError(f"No gateway registered for {provider}.")
        return gw


def build_default_registry() -> GatewayRegistry:
    return GatewayRegistry([StripeGateway(), MercadoPagoGateway()])
