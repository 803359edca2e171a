"""
Adyen adapter (Checkout API v70).

Notes on API usage:
- Auth with ``X-API-Key``; idempotency with the ``Idempotency-Key`` header.
- Amounts are ``{"value": <minor units>, "currency": "USD"}``.
- Recurring gifts are tokenized stored payment methods
  (``recurringProcessingModel=Subscription``). Adyen has no billing
  scheduler, so the charge cadence, quarterly included, is driven by the
  platform and next_charge_date is computed locally.
- Notifications arrive in batches; each item carries its own HMAC in
  ``additionalData.hmacSignature``, checked with the Adyen library's
  ``is_valid_hmac_notification``.
- Mandate ids are ``<shopperReference>:<storedPaymentMethodId>`` in results
  and in normalized webhook events alike.
- Checkout has no payment lookup; confirmations without a redirect payload
  report the outcome recorded when this instance created the payment.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from Adyen.util import generate_notification_sig, is_valid_hmac_notification
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
from core.settings import AdyenSettings, PaymentSettings
from domain.payment.entity import (
    Currency,
    MandateStatus,
    PaymentProcessor,
    PaymentStatus,
    RefundStatus,
    WebhookEventType,
)
from domain.payment.exceptions import PaymentAdapterError, payment_error
from domain.payment.fees import DEFAULT_FEE_SCHEDULES, FeeSchedule
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)

API_VERSION = "v70"
TEST_BASE_URL = f"https://checkout-test.adyen.com/{API_VERSION}"
CHECKOUT_SCRIPT_URL = "https://checkoutshopper-{env}.adyen.com/checkoutshopper/sdk/5.59.0/adyen.js"

# Checkout API errorCode values
_ADYEN_ERROR_CODES: dict[str, PaymentErrorCode] = {
    "010": PaymentErrorCode.CARD_DECLINED,
    "100": PaymentErrorCode.INSUFFICIENT_FUNDS,
    "101": PaymentErrorCode.EXPIRED_CARD,
    "103": PaymentErrorCode.INVALID_CARD,
    "803": PaymentErrorCode.AUTHENTICATION_FAILED,
    "000": PaymentErrorCode.UNKNOWN_ERROR,
    "901": PaymentErrorCode.INVALID_API_KEY,
    "704": PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
}

# resultCode=Refused refusalReasonCode values
_REFUSAL_REASON_CODES: dict[str, PaymentErrorCode] = {
    "2": PaymentErrorCode.CARD_DECLINED,
    "20": PaymentErrorCode.CARD_DECLINED,
    "6": PaymentErrorCode.EXPIRED_CARD,
    "8": PaymentErrorCode.INVALID_CARD,
    "24": PaymentErrorCode.INVALID_CARD,
    "12": PaymentErrorCode.INSUFFICIENT_FUNDS,
}

# eventCodes whose success=false means the operation failed
_FAILURE_EVENT_OVERRIDES: dict[str, WebhookEventType] = {
    "AUTHORISATION": WebhookEventType.PAYMENT_FAILED,
    "REFUND": WebhookEventType.PAYMENT_FAILED,
    "CANCEL_OR_REFUND": WebhookEventType.PAYMENT_FAILED,
    "RECURRING_CONTRACT": WebhookEventType.MANDATE_FAILED,
}


def sign_notification_item(item: dict[str, Any], hmac_key_hex: str) -> str:
    """Base64 HMAC-SHA256 of one notification item, as Adyen places it in ``additionalData.hmacSignature``."""
    unsigned = {k: v for k, v in item.items() if k != "additionalData"}
    return generate_notification_sig(unsigned, hmac_key_hex).decode("ascii")


class AdyenClient(BasePaymentClient):
    provider = PaymentProcessor.ADYEN.value
    signature_header = None  # signatures travel inside each notification item
    capabilities = GatewayCapabilities(
        update_mandate_amount=False,
        update_mandate_payment_method=False,
        native_quarterly_interval=False,
        batched_webhooks=True,
    )

    def __init__(
        self,
        config: AdyenSettings,
        *,
        timeouts: Optional[dict[str, float]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not config.configured:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                "ADYEN__API_KEY and ADYEN__MERCHANT_ACCOUNT must be configured",
                processor=self.provider,
            )
        if not config.test_mode and not config.live_url_prefix:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                "ADYEN__LIVE_URL_PREFIX is required in live mode",
                processor=self.provider,
            )
        schedule = DEFAULT_FEE_SCHEDULES[PaymentProcessor.ADYEN]
        if config.fee_percentage is not None and config.fee_fixed is not None:
            schedule = FeeSchedule(config.fee_percentage, config.fee_fixed)
        super().__init__(fee_schedule=schedule, timeouts=timeouts, http_client=http_client)
        self.config = config
        if config.test_mode:
            self.base_url = TEST_BASE_URL
        else:
            self.base_url = (
                f"https://{config.live_url_prefix}-checkout-live.adyenpayments.com/checkout/{API_VERSION}"
            )
        # Outcome of each payment created through this instance, by pspReference
        self._outcomes: dict[str, PaymentConfirmationResult] = {}

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
        fallback: PaymentErrorCode = PaymentErrorCode.API_ERROR,
    ) -> dict[str, Any]:
        headers = {"X-API-Key": self.config.api_key or "", "Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return await self._request(
            method,
            f"{self.base_url}{path}",
            json=json_body,
            params=params,
            headers=headers,
            fallback=fallback,
        )

    # Error translation
    def _extract_error(self, body: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
        code = body.get("errorCode")
        return (str(code) if code is not None else None), body.get("message")

    def _map_error_code(self, vendor_code: Optional[str], body: dict[str, Any]) -> Optional[PaymentErrorCode]:
        return _ADYEN_ERROR_CODES.get(vendor_code or "")

    def _raise_for_refusal(self, result: dict[str, Any], fallback: PaymentErrorCode) -> None:
        if result.get("resultCode") not in ("Refused", "Error"):
            return
        reason_code = str(result.get("refusalReasonCode") or "")
        code = _REFUSAL_REASON_CODES.get(reason_code, fallback)
        logger.warning(
            "adyen_payment_refused",
            psp_reference=result.get("pspReference"),
            refusal_reason_code=reason_code,
            error_code=code.value,
        )
        raise payment_error(
            code,
            result.get("refusalReason") or "Adyen refused the payment",
            processor=self.provider,
            processor_code=reason_code or result.get("resultCode"),
            processor_message=result.get("refusalReason"),
            details={"psp_reference": result.get("pspReference")},
        )

    # Helpers
    @staticmethod
    def _amount(amount: int, currency: Currency) -> dict[str, Any]:
        return {"value": amount, "currency": currency.value}

    @staticmethod
    def shopper_reference(email: str) -> str:
        """Stable, non-reversible shopper id derived from the donor email."""
        return "donor-" + hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()[:32]

    def _payment_method(self, token: Optional[str], data: Optional[dict[str, Any]]) -> dict[str, Any]:
        if data:
            return dict(data)
        if token:
            return {"type": "scheme", "storedPaymentMethodId": token}
        raise payment_error(
            PaymentErrorCode.INVALID_REQUEST,
            "Adyen payments need paymentMethod data from Drop-in or Components",
            processor=self.provider,
        )

    # One-time gifts
    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_payment_intent")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        metadata = {
            **req.metadata,
            **self._fee_metadata(req.amount, req.donor_covers_fee, fees),
        }
        body: dict[str, Any] = {
            "amount": self._amount(fees.total_amount, req.currency),
            "reference": key,
            "merchantAccount": self.config.merchant_account,
            "paymentMethod": self._payment_method(req.payment_method_token, req.payment_method_data),
            "shopperEmail": req.donor_email,
            "returnUrl": metadata.get("return_url") or "https://example.org/donate/return",
            "metadata": metadata,
        }
        if req.donor_name:
            first, _, last = req.donor_name.partition(" ")
            body["shopperName"] = {"firstName": first, "lastName": last or first}
        if req.description:
            body["shopperStatement"] = req.description[:22]

        result = await self._call(
            "POST",
            "/payments",
            json_body=body,
            idempotency_key=key,
            fallback=PaymentErrorCode.PAYMENT_FAILED,
        )
        self._raise_for_refusal(result, PaymentErrorCode.PAYMENT_FAILED)
        self._log("adyen_payment_created", psp_reference=result.get("pspReference"), result_code=result.get("resultCode"))
        action = result.get("action")
        psp = str(result.get("pspReference") or key)
        status = self._map_status(result.get("resultCode"), default=PaymentStatus.PENDING)
        self._outcomes[psp] = PaymentConfirmationResult(
            status=status,
            transaction_id=psp,
            amount=fees.total_amount,
            currency=req.currency,
            processor_fee=fees.calculated_fee,
            net_amount=fees.net_amount,
            metadata={"resultCode": result.get("resultCode"), "merchantReference": key},
        )
        return PaymentIntentResult(
            payment_intent_id=psp,
            # Pending 3DS/redirect action for the client, when present
            client_secret=action.get("url") if isinstance(action, dict) else None,
            status=status,
            amount=fees.total_amount,
            currency=req.currency,
            processor_fee=fees.calculated_fee,
            net_amount=fees.net_amount,
            processor=PaymentProcessor.ADYEN,
            metadata={**metadata, **({"action": action} if action else {})},
        )

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult:
        if not req.details:
            # No redirect step: the authorisation was decided at creation
            recorded = self._outcomes.get(req.payment_intent_id)
            if recorded is not None:
                return recorded
            self._log("adyen_confirm_awaiting_notification", psp_reference=req.payment_intent_id)
            return PaymentConfirmationResult(
                status=PaymentStatus.PENDING,
                transaction_id=req.payment_intent_id,
                amount=0,
                currency=Currency.USD,
            )
        result = await self._call(
            "POST",
            "/payments/details",
            json_body={"details": req.details},
            idempotency_key=f"details:{req.payment_intent_id}",
            fallback=PaymentErrorCode.PAYMENT_FAILED,
        )
        self._raise_for_refusal(result, PaymentErrorCode.PAYMENT_FAILED)
        amount = result.get("amount") or {}
        currency = Currency(str(amount.get("currency") or "USD").upper())
        confirmation = PaymentConfirmationResult(
            status=self._map_status(result.get("resultCode")),
            transaction_id=str(result.get("pspReference") or req.payment_intent_id),
            amount=int(amount.get("value") or 0),
            currency=currency,
            metadata={**(result.get("additionalData") or {}), "merchantReference": result.get("merchantReference")},
        )
        self._outcomes[req.payment_intent_id] = confirmation
        return confirmation

    async def refund_payment(self, req: RefundRequest) -> RefundResult:
        key = self._require_idempotency_key(req.idempotency_key, "refund_payment")
        psp = req.transaction_id or req.payment_intent_id
        if not psp:
            raise payment_error(
                PaymentErrorCode.REFUND_FAILED,
                "No pspReference given to refund",
                processor=self.provider,
            )
        if req.amount is None:
            raise payment_error(
                PaymentErrorCode.INVALID_REQUEST,
                "Adyen refunds require an explicit amount",
                processor=self.provider,
            )
        recorded = self._outcomes.get(psp)
        currency = req.currency or (recorded.currency if recorded else None)
        if currency is None:
            raise payment_error(
                PaymentErrorCode.INVALID_REQUEST,
                "Adyen refunds require the currency of the original payment",
                processor=self.provider,
                details={"psp_reference": psp},
            )
        currency = Currency(currency)
        body: dict[str, Any] = {
            "merchantAccount": self.config.merchant_account,
            "amount": self._amount(req.amount, currency),
            "reference": key,
        }
        if req.reason:
            body["merchantRefundReason"] = req.reason
        result = await self._call(
            "POST",
            f"/payments/{psp}/refunds",
            json_body=body,
            idempotency_key=key,
            fallback=PaymentErrorCode.REFUND_FAILED,
        )
        # Adyen acknowledges with status=received; the REFUND notification settles it
        status = RefundStatus.PENDING if result.get("status") == "received" else RefundStatus.FAILED
        self._log("adyen_refund_requested", psp_reference=result.get("pspReference"), status=status.value)
        return RefundResult(
            refund_id=str(result.get("pspReference") or key),
            status=status,
            amount=req.amount,
            currency=currency,
            transaction_id=psp,
        )

    # Recurring mandates
    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult:
        key = self._require_idempotency_key(req.idempotency_key, "create_recurring_mandate")
        fees = self.calculate_fees(req.amount, req.donor_covers_fee, req.currency)
        shopper_ref = self.shopper_reference(req.donor_email)
        payment_method = self._payment_method(req.payment_method_token, req.payment_method_data)
        body = {
            "amount": self._amount(fees.total_amount, req.currency),
            "reference": key,
            "merchantAccount": self.config.merchant_account,
            "paymentMethod": payment_method,
            "shopperEmail": req.donor_email,
            "shopperReference": shopper_ref,
            "shopperInteraction": "Ecommerce",
            "recurringProcessingModel": "Subscription",
            "storePaymentMethod": True,
            "returnUrl": req.metadata.get("return_url") or "https://example.org/donate/return",
            "metadata": {
                **req.metadata,
                "frequency": req.frequency.value,
                **self._fee_metadata(req.amount, req.donor_covers_fee, fees),
            },
        }
        result = await self._call(
            "POST",
            "/payments",
            json_body=body,
            idempotency_key=key,
            fallback=PaymentErrorCode.MANDATE_CREATION_FAILED,
        )
        self._raise_for_refusal(result, PaymentErrorCode.MANDATE_CREATION_FAILED)
        additional = result.get("additionalData") or {}
        stored_id = (
            additional.get("tokenization.storedPaymentMethodId")
            or additional.get("recurring.recurringDetailReference")
            or req.payment_method_token
        )
        if not stored_id:
            raise payment_error(
                PaymentErrorCode.MANDATE_CREATION_FAILED,
                "Adyen did not return a stored payment method id",
                processor=self.provider,
                details={"psp_reference": result.get("pspReference")},
            )
        status = MandateStatus.ACTIVE if result.get("resultCode") == "Authorised" else MandateStatus.PENDING
        self._log("adyen_mandate_created", psp_reference=result.get("pspReference"), status=status.value)
        return RecurringMandateResult(
            mandate_id=self.mandate_id(shopper_ref, stored_id),
            status=status,
            amount=fees.total_amount,
            currency=req.currency,
            frequency=req.frequency,
            next_charge_date=self._next_charge_date(req.frequency, None, req.start_date),
            processor=PaymentProcessor.ADYEN,
            metadata={"pspReference": result.get("pspReference"), "shopperReference": shopper_ref},
        )

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult:
        raise self._not_supported(
            "mandate update",
            "cancel the stored payment method and create a new mandate",
        )

    @staticmethod
    def mandate_id(shopper_ref: str, stored_id: str) -> str:
        """Mandate ids pair the shopper with the stored detail; both are needed to disable it."""
        return f"{shopper_ref}:{stored_id}"

    @staticmethod
    def _split_mandate_id(mandate_id: str) -> tuple[str, str]:
        shopper_ref, sep, stored_id = mandate_id.rpartition(":")
        if not sep or not shopper_ref or not stored_id:
            raise payment_error(
                PaymentErrorCode.INVALID_REQUEST,
                "Adyen mandate ids have the form <shopperReference>:<storedPaymentMethodId>",
                processor=PaymentProcessor.ADYEN.value,
                details={"mandate_id": mandate_id},
            )
        return shopper_ref, stored_id

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult:
        shopper_ref, stored_id = self._split_mandate_id(req.mandate_id)
        params = {"shopperReference": shopper_ref, "merchantAccount": self.config.merchant_account or ""}
        listing = await self._call(
            "GET",
            "/storedPaymentMethods",
            params=params,
            fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED,
        )
        stored_ids = {str(m.get("id")) for m in listing.get("storedPaymentMethods") or [] if isinstance(m, dict)}
        if stored_id not in stored_ids:
            self._log("adyen_mandate_already_cancelled", mandate_id=req.mandate_id)
            return RecurringMandateResult(
                mandate_id=req.mandate_id,
                status=MandateStatus.CANCELLED,
                processor=PaymentProcessor.ADYEN,
            )
        await self._call(
            "DELETE",
            f"/storedPaymentMethods/{stored_id}",
            params=params,
            idempotency_key=req.idempotency_key,
            fallback=PaymentErrorCode.MANDATE_UPDATE_FAILED,
        )
        self._log("adyen_mandate_cancelled", mandate_id=req.mandate_id)
        return RecurringMandateResult(
            mandate_id=req.mandate_id,
            status=MandateStatus.CANCELLED,
            processor=PaymentProcessor.ADYEN,
        )

    # Webhooks
    @staticmethod
    def _notification_items(notification: Any) -> list[dict[str, Any]]:
        if not isinstance(notification, dict):
            return []
        items = []
        for wrapper in notification.get("notificationItems") or []:
            item = wrapper.get("NotificationRequestItem") if isinstance(wrapper, dict) else None
            if isinstance(item, dict):
                items.append(item)
        return items

    def verify_webhook_signature(
        self,
        payload: bytes | str,
        signature: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> bool:
        """Every item in the batch must carry a valid HMAC; malformed input fails closed."""
        secret = secret or self.config.webhook_secret
        if not secret:
            return False
        try:
            items = self._notification_items(self._load_payload(payload))
        except PaymentAdapterError:
            return False
        if not items:
            return False
        for item in items:
            if not (item.get("additionalData") or {}).get("hmacSignature"):
                return False
            try:
                valid = is_valid_hmac_notification(item, secret)
            except (KeyError, TypeError, ValueError) as exc:
                # Non-hex key, or an item without the signed fields
                logger.error("adyen_webhook_item_unverifiable", psp_reference=item.get("pspReference"), error=type(exc).__name__)
                return False
            if not valid:
                logger.warning("adyen_webhook_signature_invalid", psp_reference=item.get("pspReference"))
                return False
        return True

    def _to_event(self, item: dict[str, Any], raw: Any) -> WebhookEvent:
        self._require_fields(item, "pspReference", "eventCode")
        event_code = str(item["eventCode"])
        success = str(item.get("success", "")).lower() == "true"
        event_type = self._map_event_type(event_code)
        if not success and event_code in _FAILURE_EVENT_OVERRIDES:
            event_type = _FAILURE_EVENT_OVERRIDES[event_code]
        amount = item.get("amount") or {}
        additional = item.get("additionalData") or {}
        additional = {k: v for k, v in additional.items() if k != "hmacSignature"}
        created = item.get("eventDate")
        stored_id = additional.get("recurring.recurringDetailReference") or additional.get(
            "tokenization.storedPaymentMethodId"
        )
        if not stored_id and event_code == "RECURRING_CONTRACT":
            # The contract notification is keyed by the stored detail itself
            stored_id = item.get("pspReference")
        shopper_ref = (
            additional.get("recurring.shopperReference")
            or additional.get("shopperReference")
            or additional.get("tokenization.shopperReference")
        )
        return WebhookEvent(
            # pspReference alone repeats across eventCodes for one payment
            id=f"{item['pspReference']}:{event_code}:{str(success).lower()}",
            type=event_type,
            processor=PaymentProcessor.ADYEN,
            vendor_type=event_code,
            data=WebhookEventData(
                payment_intent_id=item.get("originalReference") or item.get("pspReference"),
                transaction_id=item.get("pspReference"),
                mandate_id=self.mandate_id(shopper_ref, stored_id) if shopper_ref and stored_id else None,
                status="success" if success else "failed",
                amount=amount.get("value"),
                currency=amount.get("currency"),
                failure_reason=item.get("reason") or None,
                metadata={**additional, "merchantReference": item.get("merchantReference")},
            ),
            created_at=date_parser.isoparse(created) if created else datetime.now(timezone.utc),
            raw=raw,
        )

    def parse_webhook_events(self, payload: bytes | str | dict) -> list[WebhookEvent]:
        notification = self._load_payload(payload)
        items = self._notification_items(notification)
        if not items:
            raise payment_error(
                PaymentErrorCode.WEBHOOK_PROCESSING_FAILED,
                "Adyen notification has no NotificationRequestItem entries",
                processor=self.provider,
            )
        return [self._to_event(item, item) for item in items]

    def parse_webhook_event(self, payload: bytes | str | dict) -> WebhookEvent:
        return self.parse_webhook_events(payload)[0]

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult:
        env = "test" if self.config.test_mode else "live"
        return HostedFieldsResult(
            processor=PaymentProcessor.ADYEN,
            script_url=CHECKOUT_SCRIPT_URL.format(env=env),
            public_key=self.config.client_key,
            configuration={
                "environment": env,
                "amount": self._amount(config.amount, config.currency),
                "locale": config.locale or "en-US",
                "countryCode": "US",
                "returnUrl": config.return_url,
            },
        )


def build_adyen_client(settings: PaymentSettings) -> AdyenClient:
    return AdyenClient(settings.adyen, timeouts=settings.timeouts.model_dump())
