"""
Flux - lightweight project and task tracker

FastAPI application entry point.
"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Import observability modules
from flux.config import Settings, settings as default_settings
from flux.database import create_all_tables, create_engine, create_session_factory
from flux.logging_config import configure_logging
from flux.sentry_config import configure_sentry
from flux.middleware.logging import LoggingMiddleware
from flux.routes.metrics import router as metrics_router

# Import route modules
from flux.routes.projects import router as projects_router
from flux.routes.tasks import router as tasks_router
from flux.routes.webhooks import router as webhooks_router
from flux.services.webhook_service import WebhookDeliveryConfig, WebhookDispatcher

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        settings: Defaults to the environment-loaded settings
        session_factory: Use an existing session factory instead of creating
            an engine from DATABASE_URL
        transport: httpx transport for outbound webhook requests
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        engine = None
        factory = session_factory
        if factory is None:
            engine = create_engine(settings.DATABASE_URL)
            await create_all_tables(engine)
            factory = create_session_factory(engine)

        app.state.session_factory = factory
        app.state.dispatcher = WebhookDispatcher(
            factory,
            config=WebhookDeliveryConfig.from_settings(settings),
            transport=transport,
        )
        logger.info("app_started", app=settings.APP_NAME, version=settings.APP_VERSION)

        yield

        await app.state.dispatcher.aclose(timeout=settings.SHUTDOWN_GRACE_SECONDS)
        if engine is not None:
            await engine.dispose()
        logger.info("app_stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Lightweight project and task tracker with signed webhook delivery",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)
    app.include_router(projects_router)
    app.include_router(tasks_router)
    app.include_router(webhooks_router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "pending_deliveries": app.state.dispatcher.pending,
        }

    return app


def build_default_app() -> FastAPI:
    """App for `uvicorn flux.main:app`, with logging and Sentry configured."""
    configure_logging()
    configure_sentry()
    return create_app()


app = build_default_app()
