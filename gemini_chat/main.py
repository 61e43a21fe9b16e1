# gemini_chat/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import settings
from .database import SessionLocal, get_pool_status, init_models
from .error_handlers import register_exception_handlers
from .logging_config import get_logger, setup_logging
from .middleware import register_middleware
from .rate_limit import limiter
from .redis_client import ping_redis

# Import routers
from .auth.router import router as auth_router
from .users.router import router as users_router
from .chatrooms.router import router as chatrooms_router
from .subscriptions.router import router as subscriptions_router

logger = get_logger(__name__)

API_VERSION = "1.0.0"


def _strip_credentials(url: str) -> str:
    return url.split("@")[-1] if url else "Not configured"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 80)
    logger.info("Starting Gemini Chatrooms API")
    logger.info("=" * 80)

    logger.info(
        "Application configuration",
        extra={
            "extra_data": {
                "environment": settings.ENVIRONMENT,
                "log_level": settings.LOG_LEVEL,
                "database": _strip_credentials(settings.DATABASE_URL),
                "redis": _strip_credentials(settings.REDIS_URL),
                "celery_broker": _strip_credentials(settings.CELERY_BROKER_URL),
                "model": settings.GEMINI_LLM_MODEL,
                "free_daily_message_limit": settings.FREE_DAILY_MESSAGE_LIMIT,
            }
        }
    )

    init_models()

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        logger.info("Database connection successful")
    except Exception as e:
        logger.error(f"Database connection failed: {e}", exc_info=True)
        raise

    # Redis down is not fatal at boot; requests that need it answer 503
    if ping_redis():
        logger.info("Redis connection successful")
    else:
        logger.warning("Redis connection failed, OTP, cache and queue endpoints will be unavailable")

    logger.info("Gemini Chatrooms API is ready to accept requests")

    yield

    logger.info("Shutting down Gemini Chatrooms API")


# Setup logging BEFORE creating the app
setup_logging()

app = FastAPI(
    title="Gemini Chatrooms API",
    description="Chatrooms answered asynchronously by Google Gemini",
    version=API_VERSION,
    lifespan=lifespan,
)

app.state.limiter = limiter

register_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(chatrooms_router)
app.include_router(subscriptions_router)

logger.info("All routers registered")


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION,
    }


@app.get("/health/db-pool")
async def db_pool_health():
    return get_pool_status()


@app.get("/")
async def root():
    return {
        "message": "Gemini Chatrooms API",
        "version": API_VERSION,
        "docs": "/docs",
    }
