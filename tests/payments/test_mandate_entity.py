from datetime import date, datetime, timezone

import pytest

from domain.payment.entity import (
    Currency,
    MandateStatus,
    RecurringFrequency,
    RecurringMandate,
    next_charge_date,
)
from domain.payment.exceptions import PaymentAdapterError
from shared.codes.payment_codes import PaymentErrorCode


UTC = timezone.utc


@pytest.mark.parametrize(
    "frequency,start,expected",
    [
        (RecurringFrequency.MONTHLY, datetime(2024, 1, 31, tzinfo=UTC), datetime(2024, 2, 29, tzinfo=UTC)),
        (RecurringFrequency.MONTHLY, datetime(2023, 1, 31, tzinfo=UTC), datetime(2023, 2, 28, tzinfo=UTC)),
        (RecurringFrequency.QUARTERLY, datetime(2024, 11, 30, tzinfo=UTC), datetime(2025, 2, 28, tzinfo=UTC)),
        (RecurringFrequency.ANNUALLY, datetime(2024, 2, 29, tzinfo=UTC), datetime(2025, 2, 28, tzinfo=UTC)),
        ("monthly", date(2024, 3, 15), datetime(2024, 4, 15, tzinfo=UTC)),
    ],
)
def test_next_charge_date_clamps_month_ends(frequency, start, expected):
    assert next_charge_date(frequency, start) == expected


def test_naive_start_is_treated_as_utc():
    assert next_charge_date(RecurringFrequency.MONTHLY, datetime(2024, 5, 1, 9, 30)) == datetime(
        2024, 6, 1, 9, 30, tzinfo=UTC
    )


def _mandate(**overrides):
    data = dict(
        mandate_id="sub_1",
        processor="mock",
        amount=2500,
        currency=Currency.USD,
        frequency=RecurringFrequency.QUARTERLY,
        start_date=datetime(2024, 1, 15, tzinfo=UTC),
    )
    data.update(overrides)
    return RecurringMandate(**data)


def test_new_mandate_is_pending_with_computed_next_charge():
    mandate = _mandate()
    assert mandate.status == MandateStatus.PENDING
    assert mandate.next_charge_date == datetime(2024, 4, 15, tzinfo=UTC)


def test_lifecycle_transitions():
    mandate = _mandate()
    mandate.activate()
    assert mandate.status == MandateStatus.ACTIVE

    mandate.apply_update(amount=5000, payment_method_token="pm_new")
    assert mandate.status == MandateStatus.ACTIVE
    assert mandate.amount == 5000
    assert mandate.payment_method_token == "pm_new"

    mandate.cancel()
    assert mandate.is_terminal
    cancelled_at = mandate.cancelled_at
    mandate.cancel()
    assert mandate.cancelled_at == cancelled_at


def test_cancelled_mandate_cannot_be_updated_or_reactivated():
    mandate = _mandate()
    mandate.cancel()
    for action in (lambda: mandate.apply_update(amount=100), mandate.activate):
        with pytest.raises(PaymentAdapterError) as exc:
            action()
        assert exc.value.error_code == PaymentErrorCode.MANDATE_UPDATE_FAILED
    assert mandate.status == MandateStatus.CANCELLED


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_are_rejected(amount):
    with pytest.raises(PaymentAdapterError) as exc:
        _mandate(amount=amount)
    assert exc.value.error_code == PaymentErrorCode.INVALID_AMOUNT

    mandate = _mandate()
    with pytest.raises(PaymentAdapterError):
        mandate.apply_update(amount=amount)
    assert mandate.amount == 2500
