"""
FastAPI application factory.
"""

import os
import sys
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.router import api_router
from app.dependencies import get_task_client
from app.models.database import close_db, init_db
from app.observability.logging import setup_logging
from app.tasks.manus_client import ensure_webhook

# Startup print - visible in platform logs immediately
print(f"[STARTUP] Accounting Document Service v{settings.APP_VERSION}", flush=True)
print(f"[STARTUP] PORT={os.environ.get('PORT', 'NOT SET')}", flush=True)
print(f"[STARTUP] DATABASE_URL={'SET' if settings.DATABASE_URL else 'NOT SET'}", flush=True)
print(f"[STARTUP] Python {sys.version}", flush=True)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup
    setup_logging()

    # Sentry init if configured
    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
        )

    if settings.AUTO_CREATE_TABLES:
        await init_db()

    await ensure_webhook(get_task_client(), settings.MANUS_WEBHOOK_URL)

    logger.info("app_started", version=settings.APP_VERSION,
                primary_root=settings.PRIMARY_STORAGE_ROOT,
                secondary_configured=bool(settings.SUPABASE_URL and settings.SUPABASE_SERVICE_ROLE),
                task_service_configured=bool(settings.MANUS_API_KEY),
                ai_configured=bool(settings.ANTHROPIC_API_KEY))

    yield

    # Shutdown
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Accounting Document Service",
        description="Stores accounting documents for group companies and extracts P&L data with AI.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics endpoint
    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        metrics_app = make_asgi_app()
        app.mount("/metrics", metrics_app)

    # Include all API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
