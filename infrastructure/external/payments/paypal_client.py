"""
PayPal adapter: Orders v2 for one-time gifts, Billing Plans + Subscriptions
for recurring mandates.

Notes on API usage:
- OAuth2 client-credentials tokens are cached until shortly before expiry and
  refreshed under a lock, so concurrent callers share one token request.
- Idempotency uses the ``PayPal-Request-Id`` header.
- Amounts travel as decimal strings in major units.
- Quarterly gifts use the native ``interval_unit=MONTH, interval_count=3``.
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from dateutil import parser as date_parser

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
from core.settings import PaymentSettings, PayPalSettings
from domain.payment.entity import (
    Currency,
    MandateStatus,
    PaymentProcessor,
    PaymentStatus,
    RecurringFrequency,
    RefundStatus,
)
from domain.payment.exceptions import PaymentAdapterError, payment_error
from domain.payment.fees import DEFAULT_FEE_SCHEDULES, FeeSchedule
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)

SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
LIVE_BASE_URL = "https://api-m.paypal.com"

# Refresh before the vendor-side expiry
TOKEN_REFRESH_RATIO = 0.9

_FREQUENCY_TO_CYCLE: dict[RecurringFrequency, tuple[str, int]] = {
    RecurringFrequency.MONTHLY: ("MONTH", 1),
    RecurringFrequency.QUARTERLY: ("MONTH", 3),
    RecurringFrequency.ANNUALLY: ("YEAR", 1),
}

_PAYPAL_ERROR_CODES: dict[str, PaymentErrorCode] = {
    "INSTRUMENT_DECLINED": PaymentErrorCode.CARD_DECLINED,
    "TRANSACTION_REFUSED": PaymentErrorCode.CARD_DECLINED,
    "INSUFFICIENT_FUNDS": PaymentErrorCode.INSUFFICIENT_FUNDS,
    "CARD_EXPIRED": PaymentErrorCode.EXPIRED_CARD,
    "CARD_NUMBER_INVALID": PaymentErrorCode.INVALID_CARD,
    "INVALID_SECURITY_CODE_LENGTH": PaymentErrorCode.INVALID_CARD,
    "PAYER_CANNOT_PAY": PaymentErrorCode.PAYMENT_FAILED,
    "PAYER_ACTION_REQUIRED": PaymentErrorCode.PAYMENT_FAILED,
    "AUTHENTICATION_FAILURE": PaymentErrorCode.AUTHENTICATION_FAILED,
    "PERMISSION_DENIED": PaymentErrorCode.AUTHENTICATION_FAILED,
    "NOT_AUTHORIZED": PaymentErrorCode.AUTHENTICATION_FAILED,
    "invalid_client": PaymentErrorCode.INVALID_API_KEY,
    "INVALID_REQUEST": PaymentErrorCode.INVALID_REQUEST,
    "INVALID_PARAMETER_VALUE": PaymentErrorCode.INVALID_REQUEST,
    "DUPLICATE_INVOICE_ID": PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
    "DUPLICATE_REQUEST_ID": PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
    "INTERNAL_SERVER_ERROR": PaymentErrorCode.API_ERROR,
    "SERVICE_UNAVAILABLE": PaymentErrorCode.API_ERROR,
    "RATE_LIMIT_REACHED": PaymentErrorCode.API_ERROR,
}

_REFUND_STATUS = {
    "COMPLETED": RefundStatus.SUCCEEDED,
    "PENDING": RefundStatus.PENDING,
}


def encode_custom_id(donor_covers_fee: bool, original_amount: int, fee: int) -> str:
    """Fee breakdown packed into purchase_units[].custom_id (max 127 chars)."""
    return f"covers={int(donor_covers_fee)};orig={original_amount};fee={fee}"


def decode_custom_id(value: Optional[str]) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in (value or "").split(";"):
        key, sep, val = chunk.partition("=")
        if sep:
            parts[key] = val
    return parts


class PayPalClient(BasePaymentClient):
    provider = PaymentProcessor.PAYPAL.value
    signature_header = "PayPal-Transmission-Sig"
    capabilities = GatewayCapabilities(
        update_mandate_amount=True,
        update_mandate_payment_method=False,
        native_quarterly_interval=True,
    )

    def __init__(
        self,
        config: PayPalSettings,
        *,
        timeouts: Optional[dict[str, float]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not config.configured:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                "PAYPAL__API_KEY and PAYPAL__CLIENT_SECRET must be configured",
                processor=self.provider,
            )
        schedule = DEFAULT_FEE_SCHEDULES[PaymentProcessor.PAYPAL]
        if config.fee_percentage is not None and config.fee_fixed is not None:
            schedule = FeeSchedule(config.fee_percentage, config.fee_fixed)
        super().__init__(fee_schedule=schedule, timeouts=timeouts, http_client=http_client)
        self.config = config
        self.base_url = SANDBOX_BASE_URL if config.test_mode else LIVE_BASE_URL
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    # OAuth
    def _token_valid(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._token_expires_at

    @property
    def remote_verification(self) -> bool:
        """Certificate verification through the PayPal API when a webhook id is configured."""
        return bool(self.config.webhook_id)

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def _get_access_token(self) -> str:
        if self._token_valid():
            return self._access_token  # type: ignore[return-value]
        async with self._token_lock:
            # Another caller may have refreshed while we waited
            if self._token_valid():
                return self._access_token  # type: ignore[return-value]
            try:
                body = await self._request(
                    "POST",
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.config.api_key or "", self.config.client_secret or ""),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                    fallback=PaymentErrorCode.AUTHENTICATION_FAILED,
                )
            except PaymentAdapterError as exc:
                if exc.is_retryable():
                    raise
                raise payment_error(
                    PaymentErrorCode.AUTHENTICATION_FAILED,
                    "PayPal OAuth token request was rejected",
                    processor=self.provider,
                    processor_code=exc.processor_code,
                    processor_message=exc.processor_message,
                ) from exc
            token = body.get("access_token")
            if not token:
                raise payment_error(
                    PaymentErrorCode.AUTHENTICATION_FAILED,
                    "PayPal OAuth response carried no access_token",
                    processor=self.provider,
                )
            expires_in = float(body.get("expires_in") or 0)
            self._access_token = str(token)
            self._token_expires_at = time.monotonic() + expires_in * TOKEN_REFRESH_RATIO
            self._log("paypal_token_refreshed", expires_in=expires_in)
            return self._access_token

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        request_id: Optional[str] = None,
        prefer_representation: bool = False,
        fallback: PaymentErrorCode = PaymentErrorCode.API_ERROR,
    ) -> dict[str, Any]:
        token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        if prefer_representation:
            headers["Prefer"] = "return=representation"
        try:
            return await self._request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                headers=headers,
                fallback=fallback,
            )
        except PaymentAdapterError as exc:
            if (exc.details or {}).get("http_status") != 401:
                raise
            # Token revoked or expired early; the retry fetches a fresh one
            self.invalidate_token()
            raise payment_error(
                PaymentErrorCode.API_ERROR,
                "PayPal rejected the cached access token",
                processor=self.provider,
                processor_code=exc.processor_code,
                details={"http_status": 401},
            ) from exc

    # Error translation
    def _extract_error(self, body: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
        details = body.get("details") or []
        issue = details[0].get("issue") if details and isinstance(details[0], dict) else None
        code = issue or body.get("name") or body.get("error")
        message = body.get("message") or body.get("error_description")
        if details and isinstance(details[0], dict) and details[0].get("description"):
            message = details[0]["description"]
        return code, message

    def _map_error_code(self, vendor_code: Optional[str], body: dict[str, Any]) -> Optional[PaymentErrorCode]:
        for candidate in (vendor_code, body.get("name"), body.get("error")):
            if candidate in _PAYPAL_ERROR_CODES:
                return _PAYPAL_ERROR_CODES[candidate]
        return None

    # Helpers
    @staticmethod
    def _link(resource: dict[str, Any], *rels: str) -> Optional[str]:
        for link in resource.get("links") or []:
            if link.get("rel") in rels:
                return link.get("href")
        return None

    @staticmethod
    def _parse_time(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        return date_parser.isoparse(value)

    def _money(self, amount: int, currency: Currency) -> dict[str, str]:
        return {"currency_code": currency.value, "value": self._to_major(amount, currency)}

    def _from_money(self, money: Optional[dict[str, Any]]) -> tuple[Optional[int], Optional[Currency]]:
        if not money or money.get("value") is None:
            return None, None
        currency = Currency(str(money.get("currency_code") or "USD").upper())
        return self._to_minor(money["value"], currency), currency

    def _experience_context(self, user_action: str) -> dict[str, str]:
        return {
            "brand_name": self.config.brand_name,
            "return_url": self.config.return_url,
            "cancel_url": self.config.cancel_url,
            "user_action": user_action,
            "shipping_preference": "NO_SHIPPING",
        }

    @staticmethod
    def _first_capture(order: dict[str, Any]) -> dict[str, Any]:
        units = order.get("purchase_units") or [{}]
        captures = ((units[0].get("payments") or {}).get("captures")) or []
        return captures[0] if captures else {}

    # One-time gifts
    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_payment_intent")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": req.metadata.get("donation_id") or "default",
                    "custom_id": encode_custom_id(req.donor_covers_fee, req.amount, fees.calculated_fee),
                    "description": (req.description or "Donation")[:127],
                    "amount": self._money(fees.total_amount, req.currency),
                }
            ],
            "payment_source": {
                "paypal": {
                    "email_address": req.donor_email,
                    "experience_context": self._experience_context("PAY_NOW"),
                }
            },
        }
        order = await self._call(
            "POST",
            "/v2/checkout/orders",
            json_body=body,
            request_id=key,
            prefer_representation=True,
            fallback=PaymentErrorCode.PAYMENT_FAILED,
        )
        approve_url = self._link(order, "approve", "payer-action")
        self._log("paypal_order_created", order_id=order.get("id"), status=order.get("status"))
        return PaymentIntentResult(
            payment_intent_id=str(order["id"]),
            client_secret=approve_url,
            status=self._map_status(order.get("status"), default=PaymentStatus.PENDING),
            amount=fees.total_amount,
            currency=req.currency,
            processor_fee=fees.calculated_fee,
            net_amount=fees.net_amount,
            processor=PaymentProcessor.PAYPAL,
            metadata={
                **req.metadata,
                **self._fee_metadata(req.amount, req.donor_covers_fee, fees),
                "approveUrl": approve_url or "",
            },
        )

    async def _get_order(self, order_id: str, fallback: PaymentErrorCode) -> dict[str, Any]:
        return await self._call("GET", f"/v2/checkout/orders/{order_id}", fallback=fallback)

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult:
        try:
            order = await self._call(
                "POST",
                f"/v2/checkout/orders/{req.payment_intent_id}/capture",
                json_body={},
                request_id=f"capture:{req.payment_intent_id}",
                prefer_representation=True,
                fallback=PaymentErrorCode.PAYMENT_FAILED,
            )
        except PaymentAdapterError as exc:
            if exc.processor_code != "ORDER_ALREADY_CAPTURED":
                raise
            order = await self._get_order(req.payment_intent_id, PaymentErrorCode.PAYMENT_FAILED)

        capture = self._first_capture(order)
        amount, currency = self._from_money(capture.get("amount"))
        if amount is None:
            units = order.get("purchase_units") or [{}]
            amount, currency = self._from_money(units[0].get("amount"))
        breakdown = capture.get("seller_receivable_breakdown") or {}
        fee, _ = self._from_money(breakdown.get("paypal_fee"))
        net, _ = self._from_money(breakdown.get("net_amount"))
        status = self._map_status(capture.get("status") or order.get("status"))
        self._log("paypal_order_captured", order_id=req.payment_intent_id, status=status.value)
        return PaymentConfirmationResult(
            status=status,
            transaction_id=str(capture.get("id") or order["id"]),
            amount=amount or 0,
            currency=currency or Currency.USD,
            processor_fee=fee,
            net_amount=net if net is not None else (amount - fee if amount is not None and fee is not None else None),
            receipt_url=None,
            metadata=decode_custom_id(capture.get("custom_id")),
        )

    async def refund_payment(self, req: RefundRequest) -> RefundResult:
        key = self._require_idempotency_key(req.idempotency_key, "refund_payment")
        capture_id = req.transaction_id
        currency = req.currency
        if not capture_id and req.payment_intent_id:
            order = await self._get_order(req.payment_intent_id, PaymentErrorCode.REFUND_FAILED)
            capture = self._first_capture(order)
            capture_id = capture.get("id")
            _, currency = self._from_money(capture.get("amount"))
            currency = req.currency or currency
        if not capture_id:
            raise payment_error(
                PaymentErrorCode.REFUND_FAILED,
                "No capture found to refund",
                processor=self.provider,
                details={"payment_intent_id": req.payment_intent_id},
            )
        if req.amount is not None and currency is None:
            capture = await self._call(
                "GET", f"/v2/payments/captures/{capture_id}", fallback=PaymentErrorCode.REFUND_FAILED
            )
            _, currency = self._from_money(capture.get("amount"))

        body: dict[str, Any] = {}
        if req.amount is not None:
            body["amount"] = self._money(req.amount, currency or Currency.USD)
        if req.reason:
            body["note_to_payer"] = req.reason[:255]
        refund = await self._call(
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            json_body=body,
            request_id=key,
            prefer_representation=True,
            fallback=PaymentErrorCode.REFUND_FAILED,
        )
        refunded, refund_currency = self._from_money(refund.get("amount"))
        status = _REFUND_STATUS.get(str(refund.get("status")), RefundStatus.FAILED)
        self._log("paypal_refund_created", refund_id=refund.get("id"), status=status.value)
        return RefundResult(
            refund_id=str(refund["id"]),
            status=status,
            amount=refunded if refunded is not None else (req.amount or 0),
            currency=refund_currency or currency or Currency.USD,
            transaction_id=str(capture_id),
        )

    # Recurring mandates
    def _billing_cycle(self, amount: int, currency: Currency, frequency: RecurringFrequency) -> dict[str, Any]:
        unit, count = _FREQUENCY_TO_CYCLE[frequency]
        return {
            "frequency": {"interval_unit": unit, "interval_count": count},
            "tenure_type": "REGULAR",
            "sequence": 1,
            "total_cycles": 0,
            "pricing_scheme": {"fixed_price": self._money(amount, currency)},
        }

    @staticmethod
    def _frequency_from_plan(plan: dict[str, Any]) -> Optional[RecurringFrequency]:
        cycles = plan.get("billing_cycles") or []
        regular = next((c for c in cycles if c.get("tenure_type") == "REGULAR"), cycles[0] if cycles else None)
        if not regular:
            return None
        freq = regular.get("frequency") or {}
        if freq.get("interval_unit") == "YEAR":
            return RecurringFrequency.ANNUALLY
        if freq.get("interval_unit") == "MONTH" and int(freq.get("interval_count") or 1) == 3:
            return RecurringFrequency.QUARTERLY
        return RecurringFrequency.MONTHLY

    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_recurring_mandate")
        if not self.config.product_id:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                "PAYPAL__PRODUCT_ID is required for recurring donations",
                processor=self.provider,
            )
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        plan = await self._call(
            "POST",
            "/v1/billing/plans",
            json_body={
                "product_id": self.config.product_id,
                "name": f"Recurring Donation ({req.frequency.value})",
                "status": "ACTIVE",
                "billing_cycles": [self._billing_cycle(fees.total_amount, req.currency, req.frequency)],
                "payment_preferences": {"auto_bill_outstanding": True, "payment_failure_threshold": 3},
            },
            request_id=f"{key}:plan",
            prefer_representation=True,
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )

        body: dict[str, Any] = {
            "plan_id": plan["id"],
            "custom_id": encode_custom_id(req.donor_covers_fee, req.amount, fees.calculated_fee),
            "subscriber": {"email_address": req.donor_email},
            "application_context": self._experience_context("SUBSCRIBE_NOW"),
        }
        if req.donor_name:
            given, _, surname = req.donor_name.partition(" ")
            body["subscriber"]["name"] = {"given_name": given, "surname": surname or given}
        if req.start_date and req.start_date > datetime.now(timezone.utc):
            body["start_time"] = req.start_date.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

        subscription = await self._call(
            "POST",
            "/v1/billing/subscriptions",
            json_body=body,
            request_id=key,
            prefer_representation=True,
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )
        billing = subscription.get("billing_info") or {}
        approve_url = self._link(subscription, "approve")
        self._log("paypal_subscription_created", mandate_id=subscription.get("id"), status=subscription.get("status"))
        return RecurringMandateResult(
            mandate_id=str(subscription["id"]),
            status=MandateStatus(self._map_mandate_status(subscription.get("status"))),
            amount=fees.total_amount,
            currency=req.currency,
            frequency=req.frequency,
            next_charge_date=self._next_charge_date(
                req.frequency, self._parse_time(billing.get("next_billing_time")), req.start_date
            ),
            processor=PaymentProcessor.PAYPAL,
            metadata={**req.metadata, "planId": str(plan["id"]), "approveUrl": approve_url or ""},
        )

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult:
        if req.payment_method_token is not None:
            raise self._not_supported(
                "payment method update",
                "the donor must re-approve the subscription through PayPal",
            )
        current = await self._call(
            "GET", f"/v1/billing/subscriptions/{req.mandate_id}", fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED
        )
        if self._map_mandate_status(current.get("status")) == MandateStatus.CANCELLED.value:
            raise payment_error(
                PaymentErrorCode.MANDATE_UPDATE_FAILED,
                "Cannot update a cancelled subscription; create a new mandate",
                processor=self.provider,
                processor_code=current.get("status"),
                details={"mandate_id": req.mandate_id},
            )
        plan = await self._call(
            "GET", f"/v1/billing/plans/{current['plan_id']}", fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED
        )
        frequency = self._frequency_from_plan(plan) or RecurringFrequency.MONTHLY
        cycles = plan.get("billing_cycles") or [{}]
        _, currency = self._from_money(((cycles[0].get("pricing_scheme") or {}).get("fixed_price")))
        currency = currency or Currency.USD
        amount, _ = self._from_money(((cycles[0].get("pricing_scheme") or {}).get("fixed_price")))

        metadata: dict[str, Any] = dict(req.metadata)
        if req.amount is not None:
            revision = await self._call(
                "POST",
                f"/v1/billing/subscriptions/{req.mandate_id}/revise",
                json_body={
                    "plan_id": current["plan_id"],
                    "plan": {
                        "billing_cycles": [
                            {
                                "sequence": 1,
                                "total_cycles": 0,
                                "pricing_scheme": {"fixed_price": self._money(req.amount, currency)},
                            }
                        ]
                    },
                },
                request_id=req.idempotency_key or f"revise:{req.mandate_id}:{req.amount}",
                fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED,
            )
            amount = req.amount
            approve_url = self._link(revision, "approve")
            if approve_url:
                metadata["approveUrl"] = approve_url

        billing = current.get("billing_info") or {}
        self._log("paypal_subscription_revised", mandate_id=req.mandate_id)
        return RecurringMandateResult(
            mandate_id=req.mandate_id,
            status=MandateStatus(self._map_mandate_status(current.get("status"))),
            amount=amount,
            currency=currency,
            frequency=frequency,
            next_charge_date=self._next_charge_date(frequency, self._parse_time(billing.get("next_billing_time"))),
            processor=PaymentProcessor.PAYPAL,
            metadata=metadata,
        )

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult:
        # PayPal cancels immediately; there is no end-of-period option
        current = await self._call(
            "GET", f"/v1/billing/subscriptions/{req.mandate_id}", fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED
        )
        if self._map_mandate_status(current.get("status")) == MandateStatus.CANCELLED.value:
            self._log("paypal_subscription_already_cancelled", mandate_id=req.mandate_id, status=current.get("status"))
            return RecurringMandateResult(
                mandate_id=req.mandate_id,
                status=MandateStatus.CANCELLED,
                processor=PaymentProcessor.PAYPAL,
            )
        await self._call(
            "POST",
            f"/v1/billing/subscriptions/{req.mandate_id}/cancel",
            json_body={"reason": (req.reason or "Cancelled by donor")[:128]},
            request_id=req.idempotency_key,
            fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED,
        )
        self._log("paypal_subscription_cancelled", mandate_id=req.mandate_id)
        return RecurringMandateResult(
            mandate_id=req.mandate_id,
            status=MandateStatus.CANCELLED,
            processor=PaymentProcessor.PAYPAL,
        )

    # Webhooks
    def verify_webhook_signature(
        self,
        payload: bytes | str,
        signature: Optional[str],
        secret: Optional[str] = None,
    ) -> bool:
        """Shared-secret HMAC-SHA256 (base64) over the raw body.

        Production deployments set PAYPAL__WEBHOOK_ID and go through
        verify_webhook_remote instead.
        """
        secret = secret or self.config.webhook_secret
        if not secret or not signature:
            return False
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        expected = base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode("ascii")
        return hmac.compare_digest(expected, signature.strip())

    async def verify_webhook_remote(self, headers: dict[str, str], payload: bytes | str) -> bool:
        """Ask PayPal to verify the transmission (certificate-based signature)."""
        if not self.config.webhook_id:
            return False
        lowered = {k.lower(): v for k, v in headers.items()}
        required = {
            "auth_algo": "paypal-auth-algo",
            "cert_url": "paypal-cert-url",
            "transmission_id": "paypal-transmission-id",
            "transmission_sig": "paypal-transmission-sig",
            "transmission_time": "paypal-transmission-time",
        }
        body: dict[str, Any] = {}
        for field, header in required.items():
            if not lowered.get(header):
                return False
            body[field] = lowered[header]
        try:
            body["webhook_event"] = json.loads(payload)
        except (TypeError, ValueError):
            return False
        body["webhook_id"] = self.config.webhook_id
        try:
            result = await self._call(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                json_body=body,
                fallback=PaymentErrorCode.INVALID_SIGNATURE,
            )
        except PaymentAdapterError as exc:
            if exc.is_retryable():
                raise
            logger.warning("paypal_webhook_remote_verify_rejected", error_code=exc.error_code.value)
            return False
        return result.get("verification_status") == "SUCCESS"

    def _event_data(self, resource_type: Optional[str], resource: dict[str, Any]) -> WebhookEventData:
        if resource_type == "subscription":
            return WebhookEventData(
                mandate_id=resource.get("id"),
                status=self._map_mandate_status(resource.get("status")),
                metadata=decode_custom_id(resource.get("custom_id")),
            )
        if resource_type == "dispute":
            txns = resource.get("disputed_transactions") or [{}]
            amount, currency = self._from_money(resource.get("dispute_amount"))
            return WebhookEventData(
                transaction_id=txns[0].get("seller_transaction_id"),
                status=resource.get("status"),
                amount=amount,
                currency=currency.value if currency else None,
                failure_reason=resource.get("reason"),
            )
        amount, currency = self._from_money(resource.get("amount"))
        related = ((resource.get("supplementary_data") or {}).get("related_ids")) or {}
        status_details = resource.get("status_details") or {}
        return WebhookEventData(
            payment_intent_id=related.get("order_id"),
            transaction_id=resource.get("id"),
            mandate_id=resource.get("billing_agreement_id"),
            status=resource.get("status"),
            amount=amount,
            currency=currency.value if currency else None,
            failure_reason=status_details.get("reason"),
            metadata=decode_custom_id(resource.get("custom_id")),
        )

    def parse_webhook_event(self, payload: bytes | str | dict) -> WebhookEvent:
        event = self._require_fields(self._load_payload(payload), "id", "event_type")
        resource = event.get("resource") or {}
        return WebhookEvent(
            id=str(event["id"]),
            type=self._map_event_type(event["event_type"]),
            processor=PaymentProcessor.PAYPAL,
            vendor_type=str(event["event_type"]),
            data=self._event_data(event.get("resource_type"), resource) if isinstance(resource, dict) else WebhookEventData(),
            created_at=self._parse_time(event.get("create_time")) or datetime.now(timezone.utc),
            raw=event,
        )

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult:
        query = httpx.QueryParams(
            {
                "client-id": self.config.api_key or "",
                "currency": config.currency.value,
                "intent": "capture",
                "components": "buttons,card-fields",
            }
        )
        return HostedFieldsResult(
            processor=PaymentProcessor.PAYPAL,
            script_url=f"https://www.paypal.com/sdk/js?{query}",
            public_key=self.config.api_key,
            configuration={
                "amount": self._to_major(config.amount, config.currency),
                "currency": config.currency.value,
                "locale": config.locale,
                "returnUrl": config.return_url or self.config.return_url,
            },
        )


def build_paypal_client(settings: PaymentSettings) -> PayPalClient:
    return PayPalClient(settings.paypal, timeouts=settings.timeouts.model_dump())
