"""
Deterministic in-process processor for tests and local development.

Honors the same contract as the real adapters: idempotency keys replay the
first result, mandates follow the domain lifecycle, and webhooks are signed
with a hex HMAC-SHA256 over the raw body. Failures can be scripted per
operation with ``fail_with``.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    GatewayCapabilities,
    HostedFieldsConfig,
    HostedFieldsResult,
    PaymentConfirmationResult,
    PaymentIntentResult,
    RecurringMandateResult,
    RefundRequest,
    RefundResult,
    UpdateRecurringMandate,
    WebhookEvent,
    WebhookEventData,
)
from core.settings import PaymentSettings
from domain.payment.entity import (
    PaymentProcessor,
    PaymentStatus,
    RecurringMandate,
    RefundStatus,
)
from domain.payment.exceptions import payment_error
from domain.payment.fees import DEFAULT_FEE_SCHEDULES, FeeSchedule
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PaymentErrorCode


# Payment-method tokens that deterministically fail at the vendor
DECLINE_TOKENS: dict[str, PaymentErrorCode] = {
    "pm_card_declined": PaymentErrorCode.CARD_DECLINED,
    "pm_insufficient_funds": PaymentErrorCode.INSUFFICIENT_FUNDS,
    "pm_expired_card": PaymentErrorCode.EXPIRED_CARD,
    "pm_invalid_card": PaymentErrorCode.INVALID_CARD,
}


@dataclass
class ScriptedFailure:
    code: PaymentErrorCode
    remaining: Optional[int] = None  # None: fail forever
    operation: Optional[str] = None  # None: every operation
    after_effect: bool = False  # vendor applied the call, response lost

    def matches(self, operation: str, after_effect: bool) -> bool:
        if self.remaining is not None and self.remaining <= 0:
            return False
        return self.after_effect == after_effect and self.operation in (None, operation)


class MockPaymentClient(BasePaymentClient):
    provider = PaymentProcessor.MOCK.value
    signature_header = "X-Mock-Signature"
    capabilities = GatewayCapabilities(
        update_mandate_amount=True,
        update_mandate_payment_method=True,
        native_quarterly_interval=True,
    )

    def __init__(
        self,
        *,
        webhook_secret: str = "mock_webhook_secret",
        fee_schedule: Optional[FeeSchedule] = None,
        delay: float = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        super().__init__(fee_schedule=fee_schedule or DEFAULT_FEE_SCHEDULES[PaymentProcessor.MOCK])
        self.webhook_secret = webhook_secret
        self.delay = delay
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.call_counts: Counter[str] = Counter()
        self.effects: list[tuple[str, str]] = []
        self.intents: dict[str, dict[str, Any]] = {}
        self.charges: dict[str, dict[str, Any]] = {}
        self.mandates: dict[str, RecurringMandate] = {}
        self._failures: list[ScriptedFailure] = []
        self._responses: dict[tuple[str, str], tuple[str, Any]] = {}
        self._sequence = 0

    # Scripting
    def fail_with(
        self,
        code: PaymentErrorCode | str,
        *,
        times: Optional[int] = None,
        operation: Optional[str] = None,
        after_effect: bool = False,
    ) -> None:
        """Make upcoming calls raise ``code``.

        With ``after_effect`` the vendor-side change is applied before the
        error, which models a timeout whose request actually went through.
        """
        self._failures.append(ScriptedFailure(PaymentErrorCode(code), times, operation, after_effect))

    def reset(self) -> None:
        self.call_counts.clear()
        self.effects.clear()
        self.intents.clear()
        self.charges.clear()
        self.mandates.clear()
        self._failures.clear()
        self._responses.clear()
        self._sequence = 0

    def _check_failure(self, operation: str, after_effect: bool) -> None:
        for failure in self._failures:
            if failure.matches(operation, after_effect):
                if failure.remaining is not None:
                    failure.remaining -= 1
                raise payment_error(
                    failure.code,
                    f"Scripted mock failure for {operation}",
                    processor=self.provider,
                    processor_code="scripted",
                )

    async def _begin(self, operation: str) -> None:
        self.call_counts[operation] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self._check_failure(operation, after_effect=False)

    # Idempotency
    @staticmethod
    def _fingerprint(req: Any) -> str:
        body = req.model_dump_json(exclude={"idempotency_key"})
        return hashlib.sha256(body.encode("utf-8")).hexdigest()

    def _replay(self, operation: str, key: Optional[str], fingerprint: str) -> Any:
        if not key:
            return None
        cached = self._responses.get((operation, key))
        if cached is None:
            return None
        stored_fingerprint, result = cached
        if stored_fingerprint != fingerprint:
            raise payment_error(
                PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
                f"Idempotency key reused with different parameters for {operation}",
                processor=self.provider,
                details={"idempotency_key": key},
            )
        return result

    def _remember(self, operation: str, key: Optional[str], fingerprint: str, result: Any) -> Any:
        if key:
            self._responses[(operation, key)] = (fingerprint, result)
        self._check_failure(operation, after_effect=True)
        return result

    def _new_id(self, prefix: str, key: Optional[str] = None) -> str:
        if key:
            return f"{prefix}_{hashlib.sha256(key.encode('utf-8')).hexdigest()[:24]}"
        self._sequence += 1
        return f"{prefix}_{self._sequence:06d}"

    def _reject_token(self, token: Optional[str], operation: str) -> None:
        code = DECLINE_TOKENS.get(token or "")
        if code is not None:
            raise payment_error(
                code,
                f"Mock {operation} declined",
                processor=self.provider,
                processor_code=token,
            )

    # One-time gifts
    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_payment_intent")
        await self._begin("create_payment_intent")
        fingerprint = self._fingerprint(req)
        cached = self._replay("create_payment_intent", key, fingerprint)
        if cached is not None:
            return cached

        self._reject_token(req.payment_method_token, "payment")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        intent_id = self._new_id("mock_pi", key)
        self.intents[intent_id] = {
            "id": intent_id,
            "amount": fees.total_amount,
            "fee": fees.calculated_fee,
            "currency": req.currency,
            "status": PaymentStatus.PENDING,
            "metadata": dict(req.metadata),
            "created_at": self.clock(),
        }
        self.effects.append(("payment_intent", intent_id))
        result = PaymentIntentResult(
            payment_intent_id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=PaymentStatus.PENDING,
            amount=fees.total_amount,
            currency=req.currency,
            processor_fee=fees.calculated_fee,
            net_amount=fees.net_amount,
            processor=PaymentProcessor.MOCK,
            metadata={**req.metadata, **self._fee_metadata(req.amount, req.donor_covers_fee, fees)},
        )
        return self._remember("create_payment_intent", key, fingerprint, result)

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult:
        await self._begin("confirm_payment")
        intent = self.intents.get(req.payment_intent_id)
        if intent is None:
            raise payment_error(
                PaymentErrorCode.PAYMENT_FAILED,
                "Payment intent not found",
                processor=self.provider,
                details={"payment_intent_id": req.payment_intent_id},
            )
        self._reject_token(req.payment_method_token, "confirmation")

        charge_id = intent.get("charge_id")
        if charge_id is None:
            # Confirming twice returns the existing charge
            charge_id = self._new_id("mock_ch", f"charge:{intent['id']}")
            intent["charge_id"] = charge_id
            intent["status"] = PaymentStatus.SUCCESS
            self.charges[charge_id] = {
                "id": charge_id,
                "payment_intent_id": intent["id"],
                "amount": intent["amount"],
                "currency": intent["currency"],
                "refunded": 0,
            }
            self.effects.append(("charge", charge_id))
        result = PaymentConfirmationResult(
            status=PaymentStatus.SUCCESS,
            transaction_id=charge_id,
            amount=intent["amount"],
            currency=intent["currency"],
            processor_fee=intent["fee"],
            net_amount=intent["amount"] - intent["fee"],
            receipt_url=f"https://mock-payments.example.com/receipts/{charge_id}",
            metadata=intent["metadata"],
        )
        self._check_failure("confirm_payment", after_effect=True)
        return result

    async def refund_payment(self, req: RefundRequest) -> RefundResult:
        key = self._require_idempotency_key(req.idempotency_key, "refund_payment")
        await self._begin("refund_payment")
        fingerprint = self._fingerprint(req)
        cached = self._replay("refund_payment", key, fingerprint)
        if cached is not None:
            return cached

        charge = self.charges.get(req.transaction_id or "")
        if charge is None and req.payment_intent_id:
            charge_id = (self.intents.get(req.payment_intent_id) or {}).get("charge_id")
            charge = self.charges.get(charge_id or "")
        if charge is None:
            raise payment_error(
                PaymentErrorCode.REFUND_FAILED,
                "No captured charge found to refund",
                processor=self.provider,
                details={"transaction_id": req.transaction_id, "payment_intent_id": req.payment_intent_id},
            )
        remaining = charge["amount"] - charge["refunded"]
        amount = req.amount if req.amount is not None else remaining
        if amount <= 0 or amount > remaining:
            raise payment_error(
                PaymentErrorCode.REFUND_FAILED,
                f"Refund of {amount} exceeds the refundable balance {remaining}",
                processor=self.provider,
                details={"transaction_id": charge["id"]},
            )
        charge["refunded"] += amount
        refund_id = self._new_id("mock_re", key)
        self.effects.append(("refund", refund_id))
        result = RefundResult(
            refund_id=refund_id,
            status=RefundStatus.SUCCEEDED,
            amount=amount,
            currency=charge["currency"],
            transaction_id=charge["id"],
        )
        return self._remember("refund_payment", key, fingerprint, result)

    # Recurring mandates
    def _mandate_result(self, mandate: RecurringMandate) -> RecurringMandateResult:
        return RecurringMandateResult(
            mandate_id=mandate.mandate_id,
            status=mandate.status,
            amount=mandate.amount,
            currency=mandate.currency,
            frequency=mandate.frequency,
            next_charge_date=mandate.next_charge_date,
            processor=PaymentProcessor.MOCK,
            metadata=dict(mandate.metadata),
        )

    def _get_mandate(self, mandate_id: str) -> RecurringMandate:
        mandate = self.mandates.get(mandate_id)
        if mandate is None:
            raise payment_error(
                PaymentErrorCode.MANDATE_UPDATE_FAILED,
                "Mandate not found",
                processor=self.provider,
                details={"mandate_id": mandate_id},
            )
        return mandate

    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_recurring_mandate")
        await self._begin("create_recurring_mandate")
        fingerprint = self._fingerprint(req)
        cached = self._replay("create_recurring_mandate", key, fingerprint)
        if cached is not None:
            return cached

        self._reject_token(req.payment_method_token, "mandate")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        mandate = RecurringMandate(
            mandate_id=self._new_id("mock_sub", key),
            processor=self.provider,
            amount=fees.total_amount,
            currency=req.currency,
            frequency=req.frequency,
            start_date=req.start_date or self.clock(),
            payment_method_token=req.payment_method_token,
            metadata={**req.metadata, **self._fee_metadata(req.amount, req.donor_covers_fee, fees)},
        )
        mandate.activate()
        self.mandates[mandate.mandate_id] = mandate
        self.effects.append(("mandate", mandate.mandate_id))
        return self._remember("create_recurring_mandate", key, fingerprint, self._mandate_result(mandate))

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult:
        await self._begin("update_recurring_mandate")
        mandate = self._get_mandate(req.mandate_id)
        self._reject_token(req.payment_method_token, "payment method update")
        mandate.apply_update(amount=req.amount, payment_method_token=req.payment_method_token)
        mandate.metadata.update(req.metadata)
        self._check_failure("update_recurring_mandate", after_effect=True)
        return self._mandate_result(mandate)

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult:
        await self._begin("cancel_recurring_mandate")
        mandate = self._get_mandate(req.mandate_id)
        mandate.cancel()
        if req.reason:
            mandate.metadata["cancellationReason"] = req.reason
        self._check_failure("cancel_recurring_mandate", after_effect=True)
        return self._mandate_result(mandate)

    # Webhooks
    def generate_webhook_signature(self, payload: bytes | str, secret: Optional[str] = None) -> str:
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        key = (secret or self.webhook_secret).encode("utf-8")
        return hmac.new(key, body, hashlib.sha256).hexdigest()

    def build_webhook(self, event_type: str, event_id: Optional[str] = None, **data: Any) -> tuple[bytes, str]:
        """Signed notification body for tests and local tooling."""
        event = {
            "id": event_id or self._new_id("mock_evt"),
            "type": event_type,
            "created": int(self.clock().timestamp()),
            "data": data,
        }
        body = json.dumps(event, separators=(",", ":")).encode("utf-8")
        return body, self.generate_webhook_signature(body)

    def verify_webhook_signature(
        self,
        payload: bytes | str,
        signature: Optional[str],
        secret: Optional[str] = None,
    ) -> bool:
        if not signature:
            return False
        expected = self.generate_webhook_signature(payload, secret)
        return hmac.compare_digest(expected, signature.strip().lower())

    def parse_webhook_event(self, payload: bytes | str | dict) -> WebhookEvent:
        event = self._require_fields(self._load_payload(payload), "type")
        data = event.get("data") or {}
        if event.get("id"):
            event_id = str(event["id"])
        else:
            # Stable id so redeliveries of the same body deduplicate
            canonical = json.dumps(event, sort_keys=True, separators=(",", ":")).encode("utf-8")
            event_id = f"mock_evt_{hashlib.sha256(canonical).hexdigest()[:24]}"
        return WebhookEvent(
            id=event_id,
            type=self._map_event_type(str(event["type"])),
            processor=PaymentProcessor.MOCK,
            vendor_type=str(event["type"]),
            data=WebhookEventData(
                payment_intent_id=data.get("payment_intent_id"),
                transaction_id=data.get("transaction_id"),
                mandate_id=data.get("mandate_id"),
                status=data.get("status"),
                amount=data.get("amount"),
                currency=data.get("currency"),
                failure_reason=data.get("failure_reason"),
                metadata=data.get("metadata") or {},
            ),
            created_at=self._from_timestamp(event.get("created")) or self.clock(),
            raw=event,
        )

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult:
        return HostedFieldsResult(
            processor=PaymentProcessor.MOCK,
            script_url="https://mock-payments.example.com/v3/mock.js",
            public_key="mock_pk_test_123456",
            configuration={
                "amount": config.amount,
                "currency": config.currency.value,
                "locale": config.locale or "en-US",
                "theme": "mock",
            },
        )


def build_mock_client(settings: PaymentSettings) -> MockPaymentClient:
    return MockPaymentClient(
        webhook_secret=settings.mock.webhook_secret,
        delay=settings.mock.delay_seconds,
    )
