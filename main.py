"""
Course Access Entitlement Service
Subscription and free-trial access decisions for paid learning content
"""

from pathlib import Path
import logging
import traceback

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from routers.billing_router import billing_router
from routers.entitlement_router import entitlement_router
from routers.trial_router import trial_router
from database import init_db
from config.settings import settings
from services.entitlement_service import AccessCheckController
from utils.local_cache import LocalCache

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

app = FastAPI(title="Course Access Entitlements")


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


app.add_middleware(UncaughtExceptionMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def check_env_keys_on_startup():
    """Warn about optional configuration that disables features (non-fatal)"""
    missing = []
    key_checks = {
        "ADMIN_API_KEY": settings.admin_api_key,
        "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
        "REDIS_URL": settings.redis_url,
    }
    for env_key, value in key_checks.items():
        if not value:
            missing.append(env_key)
    if missing:
        logger.warning(f"Startup check: Missing environment variables: {', '.join(missing)}")
    else:
        logger.info("Startup check: All optional environment variables are set")


@app.on_event("startup")
async def initialize_entitlement_state():
    """Create the shared cache client and the access-check controller."""
    app.state.entitlement_cache = LocalCache.from_settings()
    app.state.access_controller = AccessCheckController()


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """
    Create the trials and subscriptions tables.
    A failure is logged, not raised: entitlement checks fall back to the cache.
    """
    try:
        await init_db()
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}. Serving from cache until it recovers.")


@app.get("/health")
async def health():
    return {"ok": True}


app.include_router(entitlement_router)
app.include_router(trial_router)
app.include_router(billing_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
