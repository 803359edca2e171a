"""
Application service orchestrating donation payment use-cases.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.
Every processor call goes through the RetryExecutor with a stable
idempotency key, so retries never charge a donor twice.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    FeeCalculation,
    PaymentConfirmationResult,
    PaymentIntentResult,
    RecurringMandateResult,
    RefundRequest,
    RefundResult,
    UpdateRecurringMandate,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.retry_executor import RetryExecutor
from core.logging_config import get_logger
from domain.payment.entity import Currency
from domain.payment.exceptions import payment_error
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)

# Metadata keys unique to one business operation; at least one must be present
_ANCHOR_KEYS = {
    "intent": ("donation_id", "idempotency_hint"),
    "mandate": ("donation_id", "idempotency_hint"),
    "refund": ("refund_id", "idempotency_hint"),
}
_STABLE_META_KEYS = ("donation_id", "refund_id", "idempotency_hint", "campaign_id")


def _pick_meta(meta: Optional[dict]) -> str:
    if not meta:
        return ""
    # Stable subset only; free-form metadata would change the key
    return "|".join(f"{k}={meta[k]}" for k in _STABLE_META_KEYS if k in meta)


def _require_anchor(op: str, meta: Optional[dict], provider: str) -> None:
    keys = _ANCHOR_KEYS[op]
    if meta and any(meta.get(k) for k in keys):
        return
    raise payment_error(
        PaymentErrorCode.INVALID_REQUEST,
        f"{op} needs an idempotency_key or one of metadata {list(keys)}",
        processor=provider,
        details={"operation": op},
    )


def ensure_idempotency_key(
    req: CreatePaymentIntent | CreateRecurringMandate | RefundRequest,
    provider: str,
) -> str:
    """Fill ``req.idempotency_key`` from business identifiers when the caller gave none.

    Derivation needs a unique anchor in metadata (``donation_id`` for gifts and
    mandates, ``refund_id`` for refunds); otherwise INVALID_REQUEST is raised.
    """
    if req.idempotency_key:
        return req.idempotency_key
    if isinstance(req, CreatePaymentIntent):
        _require_anchor("intent", req.metadata, provider)
        base = f"intent|{provider}|{req.donor_email.lower()}|{req.amount}|{req.currency.value}|{req.donor_covers_fee}|{_pick_meta(req.metadata)}"
    elif isinstance(req, CreateRecurringMandate):
        _require_anchor("mandate", req.metadata, provider)
        base = f"mandate|{provider}|{req.donor_email.lower()}|{req.amount}|{req.currency.value}|{req.frequency.value}|{_pick_meta(req.metadata)}"
    else:
        _require_anchor("refund", req.metadata, provider)
        base = f"refund|{provider}|{req.payment_intent_id or ''}|{req.transaction_id or ''}|{req.amount}|{_pick_meta(req.metadata)}"
    req.idempotency_key = hashlib.sha256(base.encode("utf-8")).hexdigest()
    return req.idempotency_key


class PaymentService:
    def __init__(self, gateway: PaymentGateway, executor: Optional[RetryExecutor] = None) -> None:
        self.gateway = gateway
        self.executor = executor or RetryExecutor()

    @property
    def provider(self) -> str:
        return self.gateway.provider

    def calculate_fees(
        self,
        amount: int,
        donor_covers_fee: bool,
        currency: Currency | str = Currency.USD,
    ) -> FeeCalculation:
        return self.gateway.calculate_fees(amount, donor_covers_fee, currency)

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult:
        key = ensure_idempotency_key(req, self.provider)
        logger.info(
            "payment_intent_request",
            provider=self.provider,
            amount=req.amount,
            currency=req.currency.value,
            donor_covers_fee=req.donor_covers_fee,
            idempotency_key=key,
        )
        intent = await self.executor.run(
            lambda: self.gateway.create_payment_intent(req),
            operation="create_payment_intent",
            idempotency_key=key,
        )
        logger.info(
            "payment_intent_response",
            provider=self.provider,
            payment_intent_id=intent.payment_intent_id,
            status=intent.status.value,
        )
        return intent

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult:
        logger.info("payment_confirm_request", provider=self.provider, payment_intent_id=req.payment_intent_id)
        result = await self.executor.run(
            lambda: self.gateway.confirm_payment(req),
            operation="confirm_payment",
        )
        logger.info(
            "payment_confirm_response",
            provider=self.provider,
            transaction_id=result.transaction_id,
            status=result.status.value,
        )
        return result

    async def refund_payment(self, req: RefundRequest) -> RefundResult:
        key = ensure_idempotency_key(req, self.provider)
        logger.info(
            "payment_refund_request",
            provider=self.provider,
            payment_intent_id=req.payment_intent_id,
            transaction_id=req.transaction_id,
            amount=req.amount,
        )
        return await self.executor.run(
            lambda: self.gateway.refund_payment(req),
            operation="refund_payment",
            idempotency_key=key,
        )

    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult:
        key = ensure_idempotency_key(req, self.provider)
        logger.info(
            "mandate_create_request",
            provider=self.provider,
            amount=req.amount,
            frequency=req.frequency.value,
            idempotency_key=key,
        )
        return await self.executor.run(
            lambda: self.gateway.create_recurring_mandate(req),
            operation="create_recurring_mandate",
            idempotency_key=key,
        )

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult:
        logger.info("mandate_update_request", provider=self.provider, mandate_id=req.mandate_id)
        return await self.executor.run(
            lambda: self.gateway.update_recurring_mandate(req),
            operation="update_recurring_mandate",
            idempotency_key=req.idempotency_key,
        )

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult:
        logger.info("mandate_cancel_request", provider=self.provider, mandate_id=req.mandate_id)
        return await self.executor.run(
            lambda: self.gateway.cancel_recurring_mandate(req),
            operation="cancel_recurring_mandate",
            idempotency_key=req.idempotency_key,
        )

    async def aclose(self) -> None:
        await self.gateway.aclose()
