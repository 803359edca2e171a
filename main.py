"""
FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import LocaleMiddleware, LoggingMiddleware, RequestIDMiddleware
from api.routes import payments as payments_routes
from application.ports.webhook_event_store import WebhookEventStore
from application.services.webhook_service import WebhookHandler
from core.config import settings
from core.exceptions import register_exception_handlers
from core.i18n import t
from core.logging_config import configure_logging, get_logger
from core.response import success_response
from core.settings import payment_settings
from infrastructure.external.payments.registry import PaymentGatewayRegistry
from infrastructure.repositories.webhook_event_store import (
    InMemoryWebhookEventStore,
    RedisWebhookEventStore,
)


configure_logging()
logger = get_logger(__name__)


def _default_store() -> WebhookEventStore:
    webhook = payment_settings.webhook
    if webhook.redis_url:
        logger.info("webhook_store_selected", backend="redis")
        return RedisWebhookEventStore.from_url(
            webhook.redis_url,
            ttl_seconds=webhook.dedupe_ttl_seconds,
            namespace=webhook.namespace,
        )
    logger.warning("webhook_store_selected", backend="memory", message="WEBHOOK__REDIS_URL not set; dedupe is per process")
    return InMemoryWebhookEventStore(ttl_seconds=webhook.dedupe_ttl_seconds)


def create_app(
    registry: Optional[PaymentGatewayRegistry] = None,
    store: Optional[WebhookEventStore] = None,
    handler: Optional[WebhookHandler] = None,
) -> FastAPI:
    """Build the application; arguments override the configured collaborators."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.payment_registry = registry or PaymentGatewayRegistry(payment_settings)
        app.state.webhook_event_store = store or _default_store()
        app.state.webhook_handler = handler
        logger.info(
            "payments_initialized",
            default_provider=app.state.payment_registry.settings.default_provider,
            configured=app.state.payment_registry.configured_processors(),
        )
        yield
        await app.state.payment_registry.aclose()
        close = getattr(app.state.webhook_event_store, "aclose", None)
        if close is not None:
            await close()
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        description="Processor-agnostic donation payments",
    )

    # Last added runs first: CORS, RequestID, Logging, then Locale
    app.add_middleware(LocaleMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(payments_routes.router, prefix="/api/v1")

    @app.get("/", tags=["Root"])
    async def root():
        return success_response(
            data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
            message=t("Welcome"),
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        return success_response(data={"status": "healthy"}, message=t("OK"))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
