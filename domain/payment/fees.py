"""
Processor fee calculation.

Pure and deterministic: the result is what the platform bills the donor,
reconciliation against the vendor's settled fee happens elsewhere.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from domain.payment.entity import Currency, PaymentProcessor
from domain.payment.exceptions import payment_error
from shared.codes.payment_codes import PaymentErrorCode


MINOR_UNIT_EXPONENT: dict[Currency, int] = {
    Currency.USD: 2,
    Currency.CAD: 2,
    Currency.EUR: 2,
}


@dataclass(frozen=True)
class FeeSchedule:
    """Published processor pricing: a fraction of the amount plus a fixed fee in major units."""

    percentage: Decimal
    fixed: Decimal


@dataclass(frozen=True)
class FeeCalculation:
    percentage: Decimal
    fixed_amount: int
    calculated_fee: int
    total_amount: int

    @property
    def net_amount(self) -> int:
        return self.total_amount - self.calculated_fee


DEFAULT_FEE_SCHEDULES: dict[PaymentProcessor, FeeSchedule] = {
    PaymentProcessor.STRIPE: FeeSchedule(Decimal("0.029"), Decimal("0.30")),
    PaymentProcessor.PAYPAL: FeeSchedule(Decimal("0.0299"), Decimal("0.49")),
    # Contract specific; override through ADYEN__FEE_PERCENTAGE / ADYEN__FEE_FIXED
    PaymentProcessor.ADYEN: FeeSchedule(Decimal("0.025"), Decimal("0.25")),
    PaymentProcessor.MOCK: FeeSchedule(Decimal("0.029"), Decimal("0.30")),
}


def calculate_fees(
    amount: int,
    donor_covers_fee: bool,
    schedule: FeeSchedule,
    currency: Currency | str = Currency.USD,
) -> FeeCalculation:
    """Compute the fee for ``amount`` (minor units) under ``schedule``.

    The fee is rounded half-up in major units and then converted back to
    minor units, matching vendor settlement rounding.
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise payment_error(
            PaymentErrorCode.INVALID_AMOUNT,
            f"Amount must be a positive integer in minor units: {amount!r}",
        )
    try:
        exponent = MINOR_UNIT_EXPONENT[Currency(currency)]
    except ValueError as exc:
        raise payment_error(
            PaymentErrorCode.INVALID_CURRENCY,
            f"Unsupported currency: {currency}",
        ) from exc

    scale = Decimal(10) ** exponent
    quantum = Decimal(1).scaleb(-exponent)
    major = Decimal(amount) / scale
    fee_major = (major * schedule.percentage + schedule.fixed).quantize(quantum, rounding=ROUND_HALF_UP)
    fee = int(fee_major * scale)
    total = amount + fee if donor_covers_fee else amount
    return FeeCalculation(
        percentage=schedule.percentage,
        fixed_amount=int((schedule.fixed * scale).to_integral_value(rounding=ROUND_HALF_UP)),
        calculated_fee=fee,
        total_amount=total,
    )
