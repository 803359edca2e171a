"""
Webhook event stores for duplicate-delivery suppression.

Redis is the shared store for multi-process deployments (SET NX EX);
the in-memory store serves tests and single-process development.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from application.ports.webhook_event_store import WebhookEventStore
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600


class InMemoryWebhookEventStore(WebhookEventStore):
    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: dict[tuple[str, str], float] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, expires_at in self._seen.items() if expires_at <= now]
        for key in expired:
            del self._seen[key]

    async def mark_processed(self, processor: str, event_id: str) -> bool:
        now = self._clock()
        self._purge(now)
        key = (processor, event_id)
        if key in self._seen:
            return False
        self._seen[key] = now + self.ttl_seconds
        return True

    async def forget(self, processor: str, event_id: str) -> None:
        self._seen.pop((processor, event_id), None)

    def __len__(self) -> int:
        return len(self._seen)


class RedisWebhookEventStore(WebhookEventStore):
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        namespace: str = "donation-payments",
    ) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = DEFAULT_TTL_SECONDS, namespace: str = "donation-payments") -> "RedisWebhookEventStore":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, ttl_seconds=ttl_seconds, namespace=namespace)

    def _key(self, processor: str, event_id: str) -> str:
        return f"{self.namespace}:webhook:{processor}:{event_id}"

    @staticmethod
    def _unavailable(exc: RedisError) -> BusinessException:
        return BusinessException(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message="Webhook deduplication store unavailable",
            error_type="ServiceUnavailable",
            details={"error": type(exc).__name__},
        )

    async def mark_processed(self, processor: str, event_id: str) -> bool:
        try:
            created: Optional[bool] = await self.client.set(
                self._key(processor, event_id), "1", nx=True, ex=self.ttl_seconds
            )
        except RedisError as exc:
            # Failing the request makes the vendor redeliver later
            logger.error("webhook_store_unavailable", processor=processor, event_id=event_id, error=str(exc))
            raise self._unavailable(exc) from exc
        return bool(created)

    async def forget(self, processor: str, event_id: str) -> None:
        try:
            await self.client.delete(self._key(processor, event_id))
        except RedisError as exc:
            logger.error("webhook_store_unavailable", processor=processor, event_id=event_id, error=str(exc))
            raise self._unavailable(exc) from exc

    async def aclose(self) -> None:
        await self.client.aclose()
