"""
Payment domain types: enumerations and the recurring mandate lifecycle.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional

from dateutil.relativedelta import relativedelta

from domain.payment.exceptions import payment_error
from shared.codes.payment_codes import PaymentErrorCode


class Currency(str, Enum):
    USD = "USD"
    CAD = "CAD"
    EUR = "EUR"


class PaymentProcessor(str, Enum):
    STRIPE = "stripe"
    ADYEN = "adyen"
    PAYPAL = "paypal"
    MOCK = "mock"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class MandateStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class RecurringFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


class WebhookEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_PENDING = "payment.pending"
    PAYMENT_REFUNDED = "payment.refunded"
    PAYMENT_DISPUTED = "payment.disputed"
    PAYMENT_CHARGEBACK = "payment.chargeback"
    MANDATE_CREATED = "mandate.created"
    MANDATE_UPDATED = "mandate.updated"
    MANDATE_CANCELLED = "mandate.cancelled"
    MANDATE_FAILED = "mandate.failed"
    PAYOUT_PAID = "payout.paid"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "WebhookEventType":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


_FREQUENCY_STEP = {
    RecurringFrequency.MONTHLY: relativedelta(months=1),
    RecurringFrequency.QUARTERLY: relativedelta(months=3),
    RecurringFrequency.ANNUALLY: relativedelta(years=1),
}


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def next_charge_date(
    frequency: RecurringFrequency | str,
    start: Optional[date | datetime] = None,
) -> datetime:
    """Local fallback for the next billing date.

    Always computed from the anchor date, never by stepping the previous
    result, so month-end anchors clamp (Jan 31 -> Feb 28) without drifting.
    """
    anchor = start or datetime.now(timezone.utc)
    if not isinstance(anchor, datetime):
        anchor = datetime.combine(anchor, time.min)
    return _ensure_utc(anchor) + _FREQUENCY_STEP[RecurringFrequency(frequency)]


@dataclass
class RecurringMandate:
    """
    Recurring mandate aggregate.

    Rules:
    1. pending -> active -> cancelled; cancelled is terminal
    2. active -> active on an in-place amount/payment-method update
    3. no resurrection: any update after cancellation fails
    """

    mandate_id: str
    processor: str
    amount: int
    currency: Currency
    frequency: RecurringFrequency
    status: MandateStatus = MandateStatus.PENDING
    start_date: Optional[datetime] = None
    next_charge_date: Optional[datetime] = None
    payment_method_token: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    cancelled_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise payment_error(
                PaymentErrorCode.INVALID_AMOUNT,
                f"Mandate amount must be positive: {self.amount}",
                processor=self.processor,
            )
        if self.start_date is not None:
            self.start_date = _ensure_utc(self.start_date)
        if self.next_charge_date is None:
            self.next_charge_date = next_charge_date(self.frequency, self.start_date)

    @property
    def is_terminal(self) -> bool:
        return self.status == MandateStatus.CANCELLED

    def activate(self) -> None:
        if self.status == MandateStatus.CANCELLED:
            raise payment_error(
                PaymentErrorCode.MANDATE_UPDATE_FAILED,
                "Cancelled mandates cannot be reactivated",
                processor=self.processor,
                details={"mandate_id": self.mandate_id},
            )
        self.status = MandateStatus.ACTIVE

    def apply_update(
        self,
        *,
        amount: Optional[int] = None,
        payment_method_token: Optional[str] = None,
    ) -> None:
        if self.is_terminal:
            raise payment_error(
                PaymentErrorCode.MANDATE_UPDATE_FAILED,
                "Cannot update a cancelled mandate; create a new one",
                processor=self.processor,
                details={"mandate_id": self.mandate_id},
            )
        if amount is not None:
            if amount <= 0:
                raise payment_error(
                    PaymentErrorCode.INVALID_AMOUNT,
                    f"Mandate amount must be positive: {amount}",
                    processor=self.processor,
                )
            self.amount = amount
        if payment_method_token is not None:
            self.payment_method_token = payment_method_token

    def cancel(self) -> None:
        """Cancel the mandate; cancelling twice is a no-op."""
        if self.is_terminal:
            return
        self.status = MandateStatus.CANCELLED
        self.cancelled_at = datetime.now(timezone.utc)
