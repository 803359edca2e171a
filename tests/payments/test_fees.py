from decimal import Decimal

import pytest

from domain.payment.entity import Currency, PaymentProcessor
from domain.payment.exceptions import PaymentAdapterError
from domain.payment.fees import DEFAULT_FEE_SCHEDULES, FeeSchedule, calculate_fees
from shared.codes.payment_codes import PaymentErrorCode


STRIPE = DEFAULT_FEE_SCHEDULES[PaymentProcessor.STRIPE]
PAYPAL = DEFAULT_FEE_SCHEDULES[PaymentProcessor.PAYPAL]


def test_donor_covers_fee_adds_fee_to_total():
    fees = calculate_fees(10000, True, STRIPE)
    assert fees.calculated_fee == 320
    assert fees.total_amount == 10320
    assert fees.net_amount == 10000
    assert fees.fixed_amount == 30
    assert fees.percentage == Decimal("0.029")


def test_org_absorbs_fee_when_donor_does_not_cover():
    fees = calculate_fees(10000, False, STRIPE)
    assert fees.calculated_fee == 320
    assert fees.total_amount == 10000
    assert fees.net_amount == 9680


def test_paypal_schedule():
    fees = calculate_fees(2500, True, PAYPAL)
    # 25.00 * 0.0299 + 0.49 = 1.2375 -> 1.24
    assert fees.calculated_fee == 124
    assert fees.total_amount == 2624


def test_rounds_half_up_in_major_units():
    schedule = FeeSchedule(Decimal("0.05"), Decimal("0"))
    # 0.01 * 0.05 = 0.0005 -> 0.00 ; 0.10 * 0.05 = 0.005 -> 0.01
    assert calculate_fees(1, False, schedule).calculated_fee == 0
    assert calculate_fees(10, False, schedule).calculated_fee == 1


def test_fee_is_deterministic():
    assert calculate_fees(4321, True, STRIPE) == calculate_fees(4321, True, STRIPE)


@pytest.mark.parametrize("amount", [0, -100, 10.5, True])
def test_rejects_non_positive_or_non_integer_amounts(amount):
    with pytest.raises(PaymentAdapterError) as exc:
        calculate_fees(amount, False, STRIPE)
    assert exc.value.error_code == PaymentErrorCode.INVALID_AMOUNT
    assert not exc.value.is_retryable()


def test_rejects_unsupported_currency():
    with pytest.raises(PaymentAdapterError) as exc:
        calculate_fees(1000, False, STRIPE, "GBP")
    assert exc.value.error_code == PaymentErrorCode.INVALID_CURRENCY


def test_supported_currencies_share_two_decimal_rounding():
    for currency in Currency:
        assert calculate_fees(10000, True, STRIPE, currency).total_amount == 10320
