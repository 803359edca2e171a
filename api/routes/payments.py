"""
Payments API routes.

Webhook intake plus read-only helpers for the donation form (processor
list, fee quote, hosted-field bootstrap). Keep this thin: no vendor
details here.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_gateway, get_registry, get_webhook_service
from application.dtos.payments import HostedFieldsConfig
from application.ports.payment_gateway import PaymentGateway
from application.services.webhook_service import WebhookService
from core.i18n import t
from core.logging_config import get_logger
from core.response import success_response
from domain.payment.entity import Currency
from infrastructure.external.payments.registry import PaymentGatewayRegistry


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/webhooks/{processor}", summary="Receive processor webhook")
async def payments_webhook(
    processor: str,
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    # Signatures cover the exact bytes received
    raw_body = await request.body()
    result = await service.ingest(raw_body, dict(request.headers))
    return success_response(
        data={
            "processor": service.gateway.provider,
            "events": [
                {"id": e.id, "type": e.type.value, "duplicate": False} for e in result.processed
            ]
            + [{"id": e.id, "type": e.type.value, "duplicate": True} for e in result.duplicates],
        },
        message=t("Webhook received"),
    )


@router.get("/processors", summary="List payment processors")
async def list_processors(registry: PaymentGatewayRegistry = Depends(get_registry)):
    configured = set(registry.configured_processors())
    data = []
    for name in registry.names():
        entry = {"name": name, "configured": name in configured}
        if name in configured:
            entry["capabilities"] = registry.get(name).capabilities.model_dump()
        data.append(entry)
    return success_response(data={"default": registry.settings.default_provider, "processors": data})


@router.get("/{processor}/fees", summary="Quote processing fee")
async def quote_fees(
    amount: int = Query(gt=0, description="Amount in minor units"),
    donor_covers_fee: bool = Query(default=False),
    currency: Currency = Query(default=Currency.USD),
    gateway: PaymentGateway = Depends(get_gateway),
):
    fees = gateway.calculate_fees(amount, donor_covers_fee, currency)
    return success_response(
        data={
            "processor": gateway.provider,
            "currency": currency.value,
            "percentage": str(fees.percentage),
            "fixed_amount": fees.fixed_amount,
            "calculated_fee": fees.calculated_fee,
            "total_amount": fees.total_amount,
            "net_amount": fees.net_amount,
        }
    )


@router.post("/{processor}/hosted-fields", summary="Client-side payment fields bootstrap")
async def hosted_fields(
    payload: HostedFieldsConfig,
    gateway: PaymentGateway = Depends(get_gateway),
):
    result = gateway.get_hosted_fields_config(payload)
    return success_response(data=result.model_dump(mode="json"))
