"""Tenant Signup – FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from provisioning.config import get_settings
from provisioning.database import Base, engine
from provisioning.errors import SignupError
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from provisioning.models import (  # noqa: F401
    SignupIntent, SubscriptionPlan, SignupPaymentMethod, User,
    Company, CompanyUser, Subscription, CompanyPaymentMethod, AuditLog,
)
from provisioning.routers import plans, signup

logger = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(signup.router)
app.include_router(plans.router)


@app.exception_handler(SignupError)
async def signup_error_handler(request: Request, exc: SignupError):
    if exc.status_code >= 500:
        logger.warning("[Signup] %s %s -> %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else (first.get("msg") or "Invalid request")
    return JSONResponse(
        status_code=422,
        content={"detail": message, "code": "validation", "intent_id": None},
    )


@app.on_event("startup")
def startup():
    if not settings.stripe_secret_key:
        logger.warning("[Stripe] STRIPE_SECRET_KEY not set - card checkout outside AR will fail with provider_unavailable")
    if not settings.mercadopago_access_token:
        logger.warning("[MercadoPago] MERCADOPAGO_ACCESS_TOKEN not set - AR checkout will fail with provider_unavailable")
    try:
        Base.metadata.create_all(bind=engine)
        from provisioning.database import SessionLocal
        from provisioning.seed import seed_plans
        db = SessionLocal()
        try:
            seed_plans(db)
        finally:
            db.close()
    except Exception as e:
        logger.warning("Database startup failed (tables/seed skipped). Check DATABASE_URL and network. Error: %s", e)

    # Scheduler: hourly retention sweep over abandoned and stale intents
    if settings.retention_cron_enabled:
        from apscheduler.schedulers.background import BackgroundScheduler
        from provisioning.services.retention import run_retention_job
        scheduler = BackgroundScheduler()
        scheduler.add_job(run_retention_job, "cron", minute=5)
        scheduler.start()
        logger.info("[Retention] scheduler started (hourly at :05)")


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
