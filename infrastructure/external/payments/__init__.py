"""
Processor adapters and the registry that builds them.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway

from .registry import PaymentGatewayRegistry


def get_payment_gateway(provider: Optional[str] = None, registry: Optional[PaymentGatewayRegistry] = None) -> PaymentGateway:
    """Resolve a gateway by name (default provider when omitted)."""
    return (registry or PaymentGatewayRegistry()).get(provider)


__all__ = ["PaymentGatewayRegistry", "get_payment_gateway"]
