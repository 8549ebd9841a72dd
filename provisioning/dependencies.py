"""Shared dependencies: DB session, payment gateways."""
from functools import lru_cache

from provisioning.database import get_db  # noqa: F401
from provisioning.services.gateways import GatewayRegistry, build_default_registry


@lru_cache
def _default_registry() -> GatewayRegistry:
    return build_default_registry()


def get_gateways() -> GatewayRegistry:
    """Stripe + MercadoPago gateways; tests override this with fakes."""
    return _default_registry()
