"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are integers in the currency's minor unit (cents).
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from domain.payment.entity import (
    Currency,
    MandateStatus,
    PaymentProcessor,
    PaymentStatus,
    RecurringFrequency,
    RefundStatus,
    WebhookEventType,
)
from domain.payment.fees import FeeCalculation


SUPPORTED_CURRENCIES = {c.value for c in Currency}


def _normalize_currency(v: Any) -> Any:
    if isinstance(v, Currency):
        return v
    u = (str(v or "")).upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in SUPPORTED_CURRENCIES:
        raise ValueError("unsupported currency")
    return u


CurrencyCode = Annotated[Currency, BeforeValidator(_normalize_currency)]


class CreatePaymentIntent(BaseModel):
    amount: int = Field(gt=0)
    currency: CurrencyCode = Currency.USD
    donor_email: str
    donor_name: Optional[str] = None
    donor_covers_fee: bool = False
    description: Optional[str] = None
    # Vendor token (Stripe pm_...) or Adyen encrypted paymentMethod object
    payment_method_token: Optional[str] = None
    payment_method_data: Optional[dict[str, Any]] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class PaymentIntentResult(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: PaymentStatus
    amount: int
    currency: Currency
    processor_fee: int
    net_amount: int
    processor: PaymentProcessor
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConfirmPayment(BaseModel):
    payment_intent_id: str
    payment_method_token: Optional[str] = None
    # Adyen redirect-return payload (e.g. {"redirectResult": "..."})
    details: Optional[dict[str, Any]] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentConfirmationResult(BaseModel):
    status: PaymentStatus
    transaction_id: str
    amount: int
    currency: Currency
    processor_fee: Optional[int] = None
    net_amount: Optional[int] = None
    receipt_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    payment_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount: Optional[int] = Field(default=None, gt=0)
    currency: Optional[CurrencyCode] = None
    reason: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class RefundResult(BaseModel):
    refund_id: str
    status: RefundStatus
    amount: int
    currency: Currency
    transaction_id: str


class CreateRecurringMandate(BaseModel):
    amount: int = Field(gt=0)
    currency: CurrencyCode = Currency.USD
    frequency: RecurringFrequency
    donor_email: str
    donor_name: Optional[str] = None
    donor_covers_fee: bool = False
    start_date: Optional[datetime] = None
    payment_method_token: Optional[str] = None
    payment_method_data: Optional[dict[str, Any]] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class UpdateRecurringMandate(BaseModel):
    mandate_id: str
    amount: Optional[int] = Field(default=None, gt=0)
    payment_method_token: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class CancelRecurringMandate(BaseModel):
    mandate_id: str
    reason: Optional[str] = None
    cancel_immediately: bool = True
    idempotency_key: Optional[str] = None


class RecurringMandateResult(BaseModel):
    """Mandate snapshot. Cancel responses leave fields the vendor does not echo unset."""

    mandate_id: str
    status: MandateStatus
    amount: Optional[int] = None
    currency: Optional[Currency] = None
    frequency: Optional[RecurringFrequency] = None
    next_charge_date: Optional[datetime] = None
    processor: PaymentProcessor
    metadata: dict[str, Any] = Field(default_factory=dict)


class WebhookEventData(BaseModel):
    payment_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    mandate_id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Vendor-independent projection of an inbound notification.

    ``id`` is the vendor event identifier; consumers deduplicate on
    ``(processor, id)``.
    """

    id: str
    type: WebhookEventType
    processor: PaymentProcessor
    vendor_type: Optional[str] = None
    data: WebhookEventData = Field(default_factory=WebhookEventData)
    created_at: datetime
    raw: Any = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def dedupe_key(self) -> tuple[str, str]:
        return (self.processor.value, self.id)


class HostedFieldsConfig(BaseModel):
    amount: int = Field(gt=0)
    currency: CurrencyCode = Currency.USD
    locale: Optional[str] = None
    return_url: Optional[str] = None


class HostedFieldsResult(BaseModel):
    """Client-side tokenization bootstrap; never carries card data."""

    processor: PaymentProcessor
    script_url: str
    public_key: Optional[str] = None
    configuration: dict[str, Any] = Field(default_factory=dict)


class GatewayCapabilities(BaseModel):
    update_mandate_amount: bool = False
    update_mandate_payment_method: bool = False
    native_quarterly_interval: bool = False
    batched_webhooks: bool = False


__all__ = [
    "SUPPORTED_CURRENCIES",
    "FeeCalculation",
    "CreatePaymentIntent",
    "PaymentIntentResult",
    "ConfirmPayment",
    "PaymentConfirmationResult",
    "RefundRequest",
    "RefundResult",
    "CreateRecurringMandate",
    "UpdateRecurringMandate",
    "CancelRecurringMandate",
    "RecurringMandateResult",
    "WebhookEventData",
    "WebhookEvent",
    "HostedFieldsConfig",
    "HostedFieldsResult",
    "GatewayCapabilities",
]
