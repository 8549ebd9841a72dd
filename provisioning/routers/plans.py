"""Plans offered in the signup wizard."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from provisioning.database import get_db
from provisioning.models.plan import SubscriptionPlan
from provisioning.schemas.plan import PlanResponse

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=list[PlanResponse])
def list_plans(db: Session = Depends(get_db)):
    plans = db.query(SubscriptionPlan).filter(SubscriptionPlan.active.is_(True)).order_by(SubscriptionPlan.price).all()
    return [PlanResponse.model_validate(p) for p in plans]
