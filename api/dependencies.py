"""
API dependencies: per-app payment registry, dedupe store and event handler.

All three are created in the application lifespan and kept on app.state,
so tests can build an app around their own doubles.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from application.ports.payment_gateway import PaymentGateway
from application.ports.webhook_event_store import WebhookEventStore
from application.services.webhook_service import WebhookHandler, WebhookService
from domain.payment.exceptions import PaymentAdapterError
from infrastructure.external.payments.registry import PaymentGatewayRegistry


def get_registry(request: Request) -> PaymentGatewayRegistry:
    return request.app.state.payment_registry


def get_event_store(request: Request) -> WebhookEventStore:
    return request.app.state.webhook_event_store


def get_webhook_handler(request: Request) -> Optional[WebhookHandler]:
    return getattr(request.app.state, "webhook_handler", None)


def get_gateway(
    processor: str,
    registry: PaymentGatewayRegistry = Depends(get_registry),
) -> PaymentGateway:
    """Gateway named in the path; unknown names are a 404, unconfigured ones a 503."""
    try:
        name = registry.resolve_name(processor)
    except PaymentAdapterError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown payment processor: {processor}",
        )
    return registry.get(name)


def get_webhook_service(
    gateway: PaymentGateway = Depends(get_gateway),
    store: WebhookEventStore = Depends(get_event_store),
    handler: Optional[WebhookHandler] = Depends(get_webhook_handler),
) -> WebhookService:
    return WebhookService(gateway=gateway, store=store, handler=handler)
