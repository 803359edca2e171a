"""
Inbound webhook ingestion: verify, parse, deduplicate, hand off.

The raw request body is verified before any parsing. Events already
recorded for ``(processor, event_id)`` are acknowledged without being
handed off again.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional

from application.dtos.payments import WebhookEvent
from application.ports.payment_gateway import PaymentGateway
from application.ports.webhook_event_store import WebhookEventStore
from core.logging_config import get_logger
from domain.payment.exceptions import payment_error
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)

WebhookHandler = Callable[[WebhookEvent], Awaitable[None]]


@dataclass
class WebhookIngestResult:
    processed: list[WebhookEvent] = field(default_factory=list)
    duplicates: list[WebhookEvent] = field(default_factory=list)

    @property
    def events(self) -> list[WebhookEvent]:
        return [*self.processed, *self.duplicates]


class WebhookService:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: WebhookEventStore,
        handler: Optional[WebhookHandler] = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.handler = handler

    def _signature(self, headers: Mapping[str, str]) -> Optional[str]:
        name = self.gateway.signature_header
        if not name:
            return None
        lowered = {k.lower(): v for k, v in headers.items()}
        return lowered.get(name.lower())

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> bool:
        remote = getattr(self.gateway, "verify_webhook_remote", None)
        if remote is not None and getattr(self.gateway, "remote_verification", False):
            return await remote(dict(headers), body)
        return self.gateway.verify_webhook_signature(body, self._signature(headers))

    async def ingest(self, body: bytes, headers: Mapping[str, str]) -> WebhookIngestResult:
        provider = self.gateway.provider
        if not await self.verify(body, headers):
            logger.warning("webhook_signature_rejected", provider=provider, body_size=len(body))
            raise payment_error(
                PaymentErrorCode.INVALID_SIGNATURE,
                f"{provider} webhook signature verification failed",
                processor=provider,
            )

        result = WebhookIngestResult()
        for event in self.gateway.parse_webhook_events(body):
            if not await self.store.mark_processed(provider, event.id):
                logger.info("webhook_duplicate_ignored", provider=provider, event_id=event.id, event_type=event.type.value)
                result.duplicates.append(event)
                continue
            if self.handler is not None:
                try:
                    await self.handler(event)
                except Exception:
                    # Unrecord so the vendor's redelivery is processed
                    await self.store.forget(provider, event.id)
                    logger.error("webhook_handler_failed", provider=provider, event_id=event.id, exc_info=True)
                    raise
            logger.info(
                "webhook_event_processed",
                provider=provider,
                event_id=event.id,
                event_type=event.type.value,
                vendor_type=event.vendor_type,
            )
            result.processed.append(event)
        return result
