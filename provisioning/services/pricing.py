"""Server-side signup quote: plan price plus flat-priced modules, ARS conversion for MercadoPago."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from provisioning.config import get_settings
from provisioning.models.plan import SubscriptionPlan
from provisioning.services.provider_selector import PaymentProvider

logger = logging.getLogger(__name__)

FX_TIMEOUT_SECONDS = 8.0
_CENTS = Decimal("0.01")


@dataclass
class Quote:
    amount_usd: Decimal
    amount_ars: Decimal | None = None
    fx_rate_usd_ars: Decimal | None = None
    fx_rate_at: datetime | None = None


def _round2(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def fetch_usd_ars_rate() -> Decimal:
    """Live USD->ARS rate from settings.fx_rate_url, falling back to default_usd_ars_rate."""
    settings = get_settings()
    fallback = Decimal(str(settings.default_usd_ars_rate))
    url = (settings.fx_rate_url or "").strip()
    if not url:
        return fallback
    try:
        import httpx

        with httpx.Client(timeout=FX_TIMEOUT_SECONDS) as client:
            r = client.get(url, params={"base": "USD", "symbols": "ARS"})
            r.raise_for_status()
            rate = (r.json().get("rates") or {}).get("ARS")
        if isinstance(rate, (int, float)) and rate > 0:
            return Decimal(str(rate))
        logger.warning("[Pricing] FX response had no usable ARS rate, using default %s", fallback)
    except Exception as e:
        logger.warning("[Pricing] FX lookup failed (%s), using default %s", e, fallback)
    return fallback


def quote(plan: SubscriptionPlan, modules: list[str], provider: PaymentProvider) -> Quote:
    settings = get_settings()
    if plan.is_free_trial:
        return Quote(amount_usd=Decimal("0.00"))
    base = Decimal(str(plan.price or 0))
    per_module = Decimal(str(settings.module_price_usd))
    amount_usd = _round2(base + per_module * len(modules))
    if provider != PaymentProvider.mercadopago:
        return Quote(amount_usd=amount_usd)
    rate = fetch_usd_ars_rate()
    return Quote(
        amount_usd=amount_usd,
        amount_ars=_round2(amount_usd * rate),
        fx_rate_usd_ars=rate,
        fx_rate_at=datetime.now(timezone.utc),
    )
