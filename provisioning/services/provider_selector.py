"""Billing jurisdiction -> payment processor."""
import enum


class PaymentProvider(str, enum.Enum):
    stripe = "stripe"
    mercadopago = "mercadopago"


MERCADOPAGO_COUNTRIES = frozenset({"AR"})


def normalize_country(billing_country: str | None) -> str:
    return (billing_country or "").strip().upper()


def select_provider(billing_country: str | None) -> PaymentProvider:
    if normalize_country(billing_country) in MERCADOPAGO_COUNTRIES:
        return PaymentProvider.mercadopago
    return PaymentProvider.stripe
