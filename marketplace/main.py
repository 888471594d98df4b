"""
Marketplace orders service: order placement, addresses and delivery settings.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import os

from marketplace.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from marketplace.core_settings import get_settings
from marketplace.api.routes import router as orders_router, admin_router, settings_router
from marketplace.api.errors import register_error_handlers
from marketplace.application.settings_service import SettingsService
from marketplace.infrastructure.cache import get_settings_cache
from marketplace.infrastructure.db import SessionLocal, engine, init_models

SERVICE_NAME = "marketplace-orders"
SERVICE_DESCRIPTION = "Marketplace order placement service"

settings = get_settings()
SERVICE_VERSION = settings.SERVICE_VERSION

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    db = SessionLocal()
    try:
        created = SettingsService(db, get_settings_cache()).initialize_default_settings()
        if created:
            logger.info(f"Seeded {created} default settings")
    finally:
        db.close()

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine=engine,
    cache_ping=lambda: get_settings_cache().ping()
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(admin_router)
app.include_router(settings_router)

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs"
        }
    }
