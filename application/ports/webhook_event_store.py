"""
Webhook event store port used to absorb duplicate deliveries.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class WebhookEventStore(Protocol):
    async def mark_processed(self, processor: str, event_id: str) -> bool:
        """Atomically record the event; return False when it was already recorded."""
        ...

    async def forget(self, processor: str, event_id: str) -> None:
        """Drop a record so a failed handoff can be redelivered."""
        ...
