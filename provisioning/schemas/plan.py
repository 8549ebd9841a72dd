"""Plan schemas."""
from decimal import Decimal
from pydantic import BaseModel, ConfigDict


class PlanResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    price: Decimal
    billing_period: str
    is_free_trial: bool = False

    model_config = ConfigDict(from_attributes=True)
