"""
Trading journal billing backend
Subscription status with lazy Whop revalidation, plus the Whop webhook receiver
"""

from pathlib import Path
import logging
import traceback

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from config import settings, IS_PRODUCTION
from crud.subscription import SqlSubscriptionStore
from database import AsyncSessionLocal, init_db
from routers.billing_router import billing_router, webhook_router
from services.audit_service import AuditService
from services.subscription_service import SubscriptionReconciler
from services.whop_client import WhopClient
from utils.background import BackgroundTaskRunner
from utils.rate_limit import RateLimiterMiddleware

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Seconds to let in-flight revalidations finish on shutdown
SHUTDOWN_DRAIN_SECONDS = 10.0

app = FastAPI(title="Trade Journal Billing")


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "data": {}, "error": "INTERNAL_ERROR", "message": "Internal Server Error"}
            )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        # Only set in production where HTTPS is guaranteed
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def configure_billing(application: FastAPI, session_factory=AsyncSessionLocal, provider=None) -> None:
    """Wire the store, provider client and reconciler onto app.state."""
    runner = BackgroundTaskRunner()
    store = SqlSubscriptionStore(session_factory)
    audit = AuditService(session_factory)
    application.state.task_runner = runner
    application.state.subscription_store = store
    application.state.audit = audit
    application.state.reconciler = SubscriptionReconciler(
        store=store,
        provider=provider or WhopClient(),
        runner=runner,
        audit=audit,
    )


configure_billing(app)


# ============================================================================
# STARTUP / SHUTDOWN
# ============================================================================
@app.on_event("startup")
async def check_env_keys_on_startup():
    """Check for missing environment variables on startup (non-fatal warning)"""
    missing = []
    key_checks = {
        "JWT_SECRET_KEY": settings.jwt_secret_key,
        "WHOP_API_KEY": settings.whop_api_key,
        "WHOP_WEBHOOK_SECRET": settings.whop_webhook_secret,
    }
    for env_key, value in key_checks.items():
        if not value:
            missing.append(env_key)
    if missing:
        logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
    else:
        logger.info("Startup check: All critical environment variables are set")
    if not settings.whop_webhook_verify:
        logger.warning("Whop webhook signature verification is DISABLED")


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """Initialize the database and create all tables."""
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@app.on_event("shutdown")
async def drain_background_tasks():
    """Give detached revalidations a chance to finish before the loop closes."""
    runner: BackgroundTaskRunner = app.state.task_runner
    if runner.pending:
        logger.info(f"Waiting for {runner.pending} background task(s) to finish")
    await runner.drain(timeout=SHUTDOWN_DRAIN_SECONDS)


@app.get("/health")
async def health():
    return {"ok": True}


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================
app.include_router(webhook_router)
app.include_router(billing_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
