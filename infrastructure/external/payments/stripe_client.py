"""
Stripe adapter: PaymentIntents for one-time gifts, Customer + Price +
Subscription for recurring mandates.

Notes on API usage:
- Calls go through the SDK's ``stripe.StripeClient`` async services on its
  httpx transport. Each call passes the caller's key as the
  ``idempotency_key`` request option; derived sub-requests (customer, price)
  suffix the key so a retry replays every step.
- SDK-level network retries are off; callers retry through the RetryExecutor.
- Webhook signatures are checked with ``stripe.WebhookSignature.verify_header``
  (``Stripe-Signature: t=...,v1=...``, HMAC-SHA256 with replay tolerance).
- Quarterly gifts use the native ``interval=month, interval_count=3``.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional

import httpx
import stripe

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
from core.logging_config import get_logger
from core.settings import PaymentSettings, StripeSettings
from domain.payment.entity import (
    Currency,
    MandateStatus,
    PaymentProcessor,
    RecurringFrequency,
    RefundStatus,
)
from domain.payment.exceptions import PaymentAdapterError, payment_error
from domain.payment.fees import DEFAULT_FEE_SCHEDULES, FeeSchedule
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)


_FREQUENCY_TO_INTERVAL: dict[RecurringFrequency, tuple[str, int]] = {
    RecurringFrequency.MONTHLY: ("month", 1),
    RecurringFrequency.QUARTERLY: ("month", 3),
    RecurringFrequency.ANNUALLY: ("year", 1),
}

_STRIPE_ERROR_CODES: dict[str, PaymentErrorCode] = {
    "card_declined": PaymentErrorCode.CARD_DECLINED,
    "insufficient_funds": PaymentErrorCode.INSUFFICIENT_FUNDS,
    "expired_card": PaymentErrorCode.EXPIRED_CARD,
    "incorrect_number": PaymentErrorCode.INVALID_CARD,
    "invalid_number": PaymentErrorCode.INVALID_CARD,
    "invalid_card_type": PaymentErrorCode.INVALID_CARD,
    "invalid_expiry_month": PaymentErrorCode.INVALID_CARD,
    "invalid_expiry_year": PaymentErrorCode.INVALID_CARD,
    "invalid_cvc": PaymentErrorCode.INVALID_CARD,
    "incorrect_cvc": PaymentErrorCode.INVALID_CARD,
    "authentication_required": PaymentErrorCode.PAYMENT_FAILED,
    "payment_intent_authentication_failure": PaymentErrorCode.PAYMENT_FAILED,
    "amount_too_small": PaymentErrorCode.INVALID_AMOUNT,
    "amount_too_large": PaymentErrorCode.INVALID_AMOUNT,
    "idempotency_key_in_use": PaymentErrorCode.API_ERROR,
    "rate_limit": PaymentErrorCode.API_ERROR,
}

_STRIPE_ERROR_TYPES: dict[str, PaymentErrorCode] = {
    "idempotency_error": PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
    "authentication_error": PaymentErrorCode.INVALID_API_KEY,
    "rate_limit_error": PaymentErrorCode.API_ERROR,
    "api_error": PaymentErrorCode.API_ERROR,
}

# Checked in order; the SDK picks the class from the HTTP status and error type
_STRIPE_ERROR_CLASSES: tuple[tuple[type, PaymentErrorCode], ...] = (
    (stripe.IdempotencyError, PaymentErrorCode.IDEMPOTENCY_KEY_REUSED),
    (stripe.AuthenticationError, PaymentErrorCode.INVALID_API_KEY),
    (stripe.PermissionError, PaymentErrorCode.AUTHENTICATION_FAILED),
    (stripe.RateLimitError, PaymentErrorCode.API_ERROR),
    (stripe.APIError, PaymentErrorCode.API_ERROR),
)

_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


class StripeClient(BasePaymentClient):
    provider = PaymentProcessor.STRIPE.value
    signature_header = "Stripe-Signature"
    capabilities = GatewayCapabilities(
        update_mandate_amount=True,
        update_mandate_payment_method=True,
        native_quarterly_interval=True,
    )

    def __init__(
        self,
        config: StripeSettings,
        *,
        timeouts: Optional[dict[str, float]] = None,
        webhook_tolerance: int = 300,
        http_client: Optional[stripe.HTTPClient] = None,
    ) -> None:
        if not config.api_key:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                "STRIPE__API_KEY not configured",
                processor=self.provider,
            )
        schedule = DEFAULT_FEE_SCHEDULES[PaymentProcessor.STRIPE]
        if config.fee_percentage is not None and config.fee_fixed is not None:
            schedule = FeeSchedule(config.fee_percentage, config.fee_fixed)
        super().__init__(fee_schedule=schedule, timeouts=timeouts)
        self.config = config
        self.webhook_tolerance = webhook_tolerance
        self._http = http_client or stripe.HTTPXClient(timeout=self.timeouts)
        self.sdk = stripe.StripeClient(
            config.api_key,
            base_addresses={"api": config.api_base.rstrip("/")},
            http_client=self._http,
            max_network_retries=0,
        )

    async def aclose(self) -> None:
        await self._http.close_async()

    @staticmethod
    def _options(idempotency_key: Optional[str]) -> dict[str, Any]:
        return {"idempotency_key": idempotency_key} if idempotency_key else {}

    async def _call(
        self,
        operation: Awaitable[Any],
        *,
        fallback: PaymentErrorCode = PaymentErrorCode.API_ERROR,
    ) -> dict[str, Any]:
        """Await one SDK call and translate every failure into a PaymentAdapterError."""
        try:
            # httpx timeouts are per phase; wait_for bounds the whole attempt
            obj = await asyncio.wait_for(operation, timeout=self._timeouts_cfg["total"])
        except asyncio.TimeoutError as exc:
            self._log("payment_http_timeout")
            raise payment_error(
                PaymentErrorCode.TIMEOUT,
                f"{self.provider} request timed out",
                processor=self.provider,
            ) from exc
        except stripe.APIConnectionError as exc:
            raise self._connection_error(exc) from exc
        except stripe.StripeError as exc:
            raise self._translate_stripe_error(exc, fallback) from exc
        return obj.to_dict()

    def _connection_error(self, exc: stripe.APIConnectionError) -> PaymentAdapterError:
        cause = exc.__cause__ or exc.__context__
        if isinstance(cause, httpx.TimeoutException):
            self._log("payment_http_timeout", error=type(cause).__name__)
            return payment_error(
                PaymentErrorCode.TIMEOUT,
                f"{self.provider} request timed out",
                processor=self.provider,
                processor_message=str(cause),
            )
        self._log("payment_http_transport_error", error=type(cause).__name__ if cause else None)
        return payment_error(
            PaymentErrorCode.NETWORK_ERROR,
            f"{self.provider} request failed: {type(cause or exc).__name__}",
            processor=self.provider,
            processor_message=str(cause or exc),
        )

    # Error translation
    def _translate_stripe_error(self, exc: stripe.StripeError, fallback: PaymentErrorCode) -> PaymentAdapterError:
        body = exc.json_body if isinstance(exc.json_body, dict) else {}
        err = body.get("error") or {}
        vendor_code = err.get("decline_code") or err.get("code") or err.get("type")
        code = self._map_error_code(vendor_code, body)
        if code is None:
            code = next((mapped for cls, mapped in _STRIPE_ERROR_CLASSES if isinstance(exc, cls)), None)
        if code is None:
            code = self._status_fallback(exc.http_status or 0, fallback)
        message = err.get("message") or exc.user_message
        logger.warning(
            "payment_provider_error",
            provider=self.provider,
            http_status=exc.http_status,
            error_code=code.value,
            processor_code=vendor_code,
            request_id=exc.request_id,
        )
        return payment_error(
            code,
            message or f"{self.provider} returned HTTP {exc.http_status}",
            processor=self.provider,
            processor_code=vendor_code,
            processor_message=message,
            details={"http_status": exc.http_status},
        )

    def _map_error_code(self, vendor_code: Optional[str], body: dict[str, Any]) -> Optional[PaymentErrorCode]:
        err = body.get("error") or {}
        for candidate in (err.get("decline_code"), err.get("code")):
            if candidate in _STRIPE_ERROR_CODES:
                return _STRIPE_ERROR_CODES[candidate]
        return _STRIPE_ERROR_TYPES.get(err.get("type") or "")

    # One-time gifts
    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_payment_intent")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        metadata = {
            **req.metadata,
            "donorEmail": req.donor_email,
            "donorName": req.donor_name or "",
            **self._fee_metadata(req.amount, req.donor_covers_fee, fees),
        }
        params: dict[str, Any] = {
            "amount": fees.total_amount,
            "currency": req.currency.value.lower(),
            "receipt_email": req.donor_email,
            "description": req.description,
            "metadata": metadata,
        }
        if req.payment_method_token:
            params["payment_method"] = req.payment_method_token
            params["confirm"] = True
        else:
            params["automatic_payment_methods"] = {"enabled": True}

        intent = await self._call(
            self.sdk.v1.payment_intents.create_async(params=params, options=self._options(key)),
            fallback=PaymentErrorCode.PAYMENT_FAILED,
        )
        self._log("stripe_payment_intent_created", intent_id=intent.get("id"), status=intent.get("status"))
        return PaymentIntentResult(
            payment_intent_id=str(intent["id"]),
            client_secret=intent.get("client_secret"),
            status=self._map_status(intent.get("status")),
            amount=fees.total_amount,
            currency=req.currency,
            processor_fee=fees.calculated_fee,
            net_amount=fees.net_amount,
            processor=PaymentProcessor.STRIPE,
            metadata=metadata,
        )

    @staticmethod
    def _latest_charge(intent: dict[str, Any]) -> Optional[dict[str, Any]]:
        charge = intent.get("latest_charge")
        if isinstance(charge, dict):
            return charge
        if isinstance(charge, str) and charge:
            return {"id": charge}
        charges = (intent.get("charges") or {}).get("data") or []
        return charges[0] if charges else None

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult:
        intents = self.sdk.v1.payment_intents
        if req.payment_method_token:
            # Idempotent per intent/method pair
            intent = await self._call(
                intents.confirm_async(
                    req.payment_intent_id,
                    params={"payment_method": req.payment_method_token, "expand": ["latest_charge"]},
                    options=self._options(f"confirm:{req.payment_intent_id}:{req.payment_method_token}"),
                ),
                fallback=PaymentErrorCode.PAYMENT_FAILED,
            )
        else:
            # Intents confirm client-side; read the outcome back
            intent = await self._call(
                intents.retrieve_async(req.payment_intent_id, params={"expand": ["latest_charge"]}),
                fallback=PaymentErrorCode.PAYMENT_FAILED,
            )
        charge = self._latest_charge(intent) or {}
        metadata = intent.get("metadata") or {}
        amount = int(intent.get("amount_received") or intent.get("amount") or 0)
        fee = int(metadata["feeAmount"]) if str(metadata.get("feeAmount", "")).isdigit() else None
        return PaymentConfirmationResult(
            status=self._map_status(intent.get("status")),
            transaction_id=str(charge.get("id") or intent["id"]),
            amount=amount,
            currency=Currency(str(intent.get("currency", "usd")).upper()),
            processor_fee=fee,
            net_amount=amount - fee if fee is not None else None,
            receipt_url=charge.get("receipt_url"),
            metadata=metadata,
        )

    async def refund_payment(self, req: RefundRequest) -> RefundResult:
        key = self._require_idempotency_key(req.idempotency_key, "refund_payment")
        charge_id = req.transaction_id
        if not charge_id and req.payment_intent_id:
            intent = await self._call(
                self.sdk.v1.payment_intents.retrieve_async(req.payment_intent_id),
                fallback=PaymentErrorCode.REFUND_FAILED,
            )
            charge_id = (self._latest_charge(intent) or {}).get("id")
        if not charge_id:
            raise payment_error(
                PaymentErrorCode.REFUND_FAILED,
                "No charge found to refund",
                processor=self.provider,
                details={"payment_intent_id": req.payment_intent_id},
            )

        params: dict[str, Any] = {"charge": charge_id, "amount": req.amount}
        metadata = dict(req.metadata)
        if req.reason in _REFUND_REASONS:
            params["reason"] = req.reason
        elif req.reason:
            metadata["reason"] = req.reason
        if metadata:
            params["metadata"] = metadata

        refund = await self._call(
            self.sdk.v1.refunds.create_async(params=params, options=self._options(key)),
            fallback=PaymentErrorCode.REFUND_FAILED,
        )
        status = {
            "succeeded": RefundStatus.SUCCEEDED,
            "pending": RefundStatus.PENDING,
            "requires_action": RefundStatus.PENDING,
        }.get(str(refund.get("status")), RefundStatus.FAILED)
        self._log("stripe_refund_created", refund_id=refund.get("id"), status=status.value)
        return RefundResult(
            refund_id=str(refund["id"]),
            status=status,
            amount=int(refund.get("amount") or req.amount or 0),
            currency=Currency(str(refund.get("currency") or (req.currency or Currency.USD).value).upper()),
            transaction_id=str(refund.get("charge") or charge_id),
        )

    # Recurring mandates
    async def _create_price(
        self,
        amount: int,
        currency: Currency,
        frequency: RecurringFrequency,
        idempotency_key: str,
    ) -> str:
        interval, interval_count = _FREQUENCY_TO_INTERVAL[frequency]
        params: dict[str, Any] = {
            "currency": currency.value.lower(),
            "unit_amount": amount,
            "recurring": {"interval": interval, "interval_count": interval_count},
            "product_data": {"name": "Recurring Donation"},
        }
        price = await self._call(
            self.sdk.v1.prices.create_async(params=params, options=self._options(idempotency_key)),
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )
        return str(price["id"])

    @staticmethod
    def _frequency_from_price(price: dict[str, Any]) -> RecurringFrequency:
        recurring = price.get("recurring") or {}
        interval = recurring.get("interval")
        count = int(recurring.get("interval_count") or 1)
        if interval == "year":
            return RecurringFrequency.ANNUALLY
        if interval == "month" and count == 3:
            return RecurringFrequency.QUARTERLY
        return RecurringFrequency.MONTHLY

    def _is_cancelled(self, subscription: dict[str, Any]) -> bool:
        """Ended, or scheduled to end: Stripe keeps ``status=active`` until the period closes."""
        if self._map_mandate_status(subscription.get("status")) == MandateStatus.CANCELLED.value:
            return True
        return bool(
            subscription.get("cancel_at_period_end")
            or subscription.get("cancel_at")
            or subscription.get("canceled_at")
        )

    def _subscription_result(
        self,
        subscription: dict[str, Any],
        *,
        status: Optional[MandateStatus] = None,
    ) -> RecurringMandateResult:
        items = (subscription.get("items") or {}).get("data") or [{}]
        item = items[0]
        price = item.get("price") or {}
        frequency = self._frequency_from_price(price)
        # Newer API versions report the billing period on the item
        period_end = self._from_timestamp(
            subscription.get("current_period_end") or item.get("current_period_end")
        )
        start = self._from_timestamp(subscription.get("start_date"))
        if status is None and self._is_cancelled(subscription):
            status = MandateStatus.CANCELLED
        return RecurringMandateResult(
            mandate_id=str(subscription["id"]),
            status=status or MandateStatus(self._map_mandate_status(subscription.get("status"))),
            amount=int(price.get("unit_amount") or 0),
            currency=Currency(str(price.get("currency") or "usd").upper()),
            frequency=frequency,
            next_charge_date=self._next_charge_date(frequency, period_end, start),
            processor=PaymentProcessor.STRIPE,
            metadata=subscription.get("metadata") or {},
        )

    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_recurring_mandate")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        metadata = {
            **req.metadata,
            "donorEmail": req.donor_email,
            "frequency": req.frequency.value,
            **self._fee_metadata(req.amount, req.donor_covers_fee, fees),
        }

        customer_params: dict[str, Any] = {"email": req.donor_email, "name": req.donor_name}
        if req.payment_method_token:
            customer_params["payment_method"] = req.payment_method_token
            customer_params["invoice_settings"] = {"default_payment_method": req.payment_method_token}
        customer = await self._call(
            self.sdk.v1.customers.create_async(params=customer_params, options=self._options(f"{key}:customer")),
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )
        price_id = await self._create_price(fees.total_amount, req.currency, req.frequency, f"{key}:price")

        params: dict[str, Any] = {
            "customer": customer["id"],
            "items": [{"price": price_id}],
            "metadata": metadata,
            "default_payment_method": req.payment_method_token,
        }
        if not req.payment_method_token:
            params["payment_behavior"] = "default_incomplete"
        if req.start_date and req.start_date > datetime.now(timezone.utc):
            params["billing_cycle_anchor"] = int(req.start_date.timestamp())
            params["proration_behavior"] = "none"

        subscription = await self._call(
            self.sdk.v1.subscriptions.create_async(params=params, options=self._options(key)),
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )
        self._log("stripe_subscription_created", mandate_id=subscription.get("id"), status=subscription.get("status"))
        return self._subscription_result(subscription)

    async def _get_subscription(self, mandate_id: str, fallback: PaymentErrorCode) -> dict[str, Any]:
        return await self._call(self.sdk.v1.subscriptions.retrieve_async(mandate_id), fallback=fallback)

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult:
        current = await self._get_subscription(req.mandate_id, PaymentErrorCode.MANDATE_UPDATE_FAILED)
        if self._is_cancelled(current):
            raise payment_error(
                PaymentErrorCode.MANDATE_UPDATE_FAILED,
                "Cannot update a cancelled subscription; create a new mandate",
                processor=self.provider,
                processor_code=current.get("status"),
                details={"mandate_id": req.mandate_id},
            )
        key = req.idempotency_key or f"update:{req.mandate_id}:{req.amount}:{req.payment_method_token}"
        params: dict[str, Any] = {"metadata": req.metadata or None}
        if req.payment_method_token:
            params["default_payment_method"] = req.payment_method_token
        if req.amount is not None:
            item = ((current.get("items") or {}).get("data") or [{}])[0]
            price = item.get("price") or {}
            price_id = await self._create_price(
                req.amount,
                Currency(str(price.get("currency") or "usd").upper()),
                self._frequency_from_price(price),
                f"{key}:price",
            )
            params["items"] = [{"id": item.get("id"), "price": price_id}]
            params["proration_behavior"] = "none"

        subscription = await self._call(
            self.sdk.v1.subscriptions.update_async(req.mandate_id, params=params, options=self._options(key)),
            fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED,
        )
        self._log("stripe_subscription_updated", mandate_id=req.mandate_id)
        return self._subscription_result(subscription)

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult:
        current = await self._get_subscription(req.mandate_id, PaymentErrorCode.MANDATE_UPDATE_FAILED)
        ended = self._map_mandate_status(current.get("status")) == MandateStatus.CANCELLED.value
        if ended or (not req.cancel_immediately and self._is_cancelled(current)):
            self._log("stripe_subscription_already_cancelled", mandate_id=req.mandate_id)
            return self._subscription_result(current, status=MandateStatus.CANCELLED)

        subscriptions = self.sdk.v1.subscriptions
        if req.cancel_immediately:
            operation = subscriptions.cancel_async(req.mandate_id, options=self._options(req.idempotency_key))
        else:
            params: dict[str, Any] = {"cancel_at_period_end": True}
            if req.reason:
                params["cancellation_details"] = {"comment": req.reason}
            operation = subscriptions.update_async(
                req.mandate_id, params=params, options=self._options(req.idempotency_key)
            )
        subscription = await self._call(operation, fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED)
        self._log("stripe_subscription_cancelled", mandate_id=req.mandate_id, immediate=req.cancel_immediately)
        return self._subscription_result(subscription, status=MandateStatus.CANCELLED)

    # Webhooks
    def verify_webhook_signature(
        self,
        payload: bytes | str,
        signature: Optional[str],
        secret: Optional[str] = None,
    ) -> bool:
        secret = secret or self.config.webhook_secret
        if not secret or not signature:
            return False
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, signature, secret, tolerance=self.webhook_tolerance)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("stripe_webhook_signature_invalid", error=str(exc))
            return False
        return True

    def _event_data(self, obj: dict[str, Any]) -> WebhookEventData:
        kind = obj.get("object")
        currency = str(obj["currency"]).upper() if obj.get("currency") else None
        metadata = obj.get("metadata") or {}
        if kind == "payment_intent":
            error = obj.get("last_payment_error") or {}
            return WebhookEventData(
                payment_intent_id=obj.get("id"),
                transaction_id=(self._latest_charge(obj) or {}).get("id"),
                status=self._map_status(obj.get("status")).value,
                amount=obj.get("amount"),
                currency=currency,
                failure_reason=error.get("message"),
                metadata=metadata,
            )
        if kind == "charge":
            return WebhookEventData(
                payment_intent_id=obj.get("payment_intent"),
                transaction_id=obj.get("id"),
                status=obj.get("status"),
                amount=obj.get("amount_refunded") or obj.get("amount"),
                currency=currency,
                failure_reason=obj.get("failure_message"),
                metadata=metadata,
            )
        if kind == "dispute":
            return WebhookEventData(
                payment_intent_id=obj.get("payment_intent"),
                transaction_id=obj.get("charge"),
                status=obj.get("status"),
                amount=obj.get("amount"),
                currency=currency,
                failure_reason=obj.get("reason"),
                metadata=metadata,
            )
        if kind == "subscription":
            return WebhookEventData(
                mandate_id=obj.get("id"),
                status=(
                    MandateStatus.CANCELLED.value
                    if self._is_cancelled(obj)
                    else self._map_mandate_status(obj.get("status"))
                ),
                metadata=metadata,
            )
        if kind == "invoice":
            parent = ((obj.get("parent") or {}).get("subscription_details") or {}).get("subscription")
            return WebhookEventData(
                mandate_id=obj.get("subscription") or parent,
                payment_intent_id=obj.get("payment_intent"),
                status=obj.get("status"),
                amount=obj.get("amount_due"),
                currency=currency,
                failure_reason=(obj.get("last_finalization_error") or {}).get("message"),
                metadata=metadata,
            )
        return WebhookEventData(
            transaction_id=obj.get("id"),
            status=obj.get("status"),
            amount=obj.get("amount"),
            currency=currency,
            metadata=metadata,
        )

    def parse_webhook_event(self, payload: bytes | str | dict) -> WebhookEvent:
        event = self._require_fields(self._load_payload(payload), "id", "type")
        obj = (event.get("data") or {}).get("object") or {}
        return WebhookEvent(
            id=str(event["id"]),
            type=self._map_event_type(event["type"]),
            processor=PaymentProcessor.STRIPE,
            vendor_type=str(event["type"]),
            data=self._event_data(obj) if isinstance(obj, dict) else WebhookEventData(),
            created_at=self._from_timestamp(event.get("created")) or datetime.now(timezone.utc),
            raw=event,
        )

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult:
        return HostedFieldsResult(
            processor=PaymentProcessor.STRIPE,
            script_url="https://js.stripe.com/v3/",
            public_key=self.config.publishable_key,
            configuration={
                "mode": "payment",
                "amount": config.amount,
                "currency": config.currency.value.lower(),
                "locale": config.locale or "auto",
                "paymentMethodCreation": "manual",
            },
        )


def build_stripe_client(settings: PaymentSettings) -> StripeClient:
    return StripeClient(
        settings.stripe,
        timeouts=settings.timeouts.model_dump(),
        webhook_tolerance=settings.webhook.tolerance_seconds,
    )
