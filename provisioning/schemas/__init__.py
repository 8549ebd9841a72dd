from provisioning.schemas.plan import PlanResponse
from provisioning.schemas.signup import (
    IntentCreate,
    IntentCreated,
    CheckoutStart,
    CheckoutStarted,
    IntentStatusResponse,
    MarkReadyRequest,
    FinalizeRequest,
    FinalizeResponse,
)
