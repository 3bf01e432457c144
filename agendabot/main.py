import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_events,  # noqa: F401
    models_invoice,  # noqa: F401
)
from .cache import get_redis_client
from .config import BUSINESS_NAME
from .database import Base, engine
from .domain.audit.router import router as audit_router
from .domain.billing import router as billing_router
from .domain.conversation.router import router as handoffs_router
from .domain.customers import router as customers_router
from .domain.ingestion.router import router as webhooks_router
from .domain.scheduling import router as scheduling_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Application starting up ({BUSINESS_NAME})...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    try:
        get_redis_client().ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(f"Redis unavailable - duplicate detection falls back to the database: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Agendabot API", version="1.0.0", lifespan=lifespan)


@app.middleware("http")
async def log_slow_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    elapsed = time.time() - start_time
    if elapsed > 2.0:
        logger.warning(f"🐌 Slow request: {request.method} {request.url.path} took {elapsed:.2f}s")
    return response


app.include_router(webhooks_router)
app.include_router(customers_router)
app.include_router(scheduling_router)
app.include_router(billing_router)
app.include_router(handoffs_router)
app.include_router(audit_router)


@app.get("/")
def root():
    return {"message": "Agendabot API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/health/redis")
async def redis_health_check():
    """Check Redis connectivity for monitoring"""
    try:
        redis_client = get_redis_client()

        start_time = time.time()
        redis_client.ping()
        response_time = (time.time() - start_time) * 1000

        return {"status": "healthy", "redis": {"connected": True, "response_time_ms": round(response_time, 2)}}
    except Exception as e:
        return {"status": "unhealthy", "redis": {"connected": False, "error": str(e)}}
