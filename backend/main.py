"""HR Benefits — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from backend.benefits.router import router as benefits_router
from backend.common.exceptions import register_exception_handlers
from backend.common.logging_config import configure_logging
from backend.common.rate_limit import limiter
from backend.config import settings
from backend.database import engine
from backend.notifications.router import router as notifications_router

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("HR Benefits API starting (environment=%s)", settings.ENVIRONMENT)
    if not settings.DISBURSEMENT_PROVIDER_URL:
        logger.warning("DISBURSEMENT_PROVIDER_URL is not set; using the simulated provider")
    yield
    await engine.dispose()
    logger.info("HR Benefits API stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="HR Benefits",
        description="Monthly VR / VT / mobility benefits: calculation, approval and disbursement",
        version=APP_VERSION,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "disbursement_provider": "http" if settings.DISBURSEMENT_PROVIDER_URL else "simulated",
        }

    # Register routers
    app.include_router(benefits_router, prefix="/api/v1/benefits", tags=["benefits"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])

    return app


app = create_app()
