from datetime import datetime, timezone

import pytest

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    HostedFieldsConfig,
    RefundRequest,
    UpdateRecurringMandate,
)
from domain.payment.entity import MandateStatus, PaymentStatus, RecurringFrequency, RefundStatus
from domain.payment.exceptions import PaymentAdapterError
from shared.codes.payment_codes import PaymentErrorCode


def _intent(key="donation-1", **overrides):
    data = dict(
        amount=10000,
        currency="usd",
        donor_email="donor@example.org",
        donor_covers_fee=True,
        idempotency_key=key,
        metadata={"donation_id": "d-1"},
    )
    data.update(overrides)
    return CreatePaymentIntent(**data)


@pytest.mark.asyncio
async def test_create_intent_applies_donor_covered_fee(mock_gateway):
    intent = await mock_gateway.create_payment_intent(_intent())
    assert intent.status == PaymentStatus.PENDING
    assert intent.amount == 10320
    assert intent.processor_fee == 320
    assert intent.net_amount == 10000
    assert intent.metadata["donation_id"] == "d-1"
    assert intent.metadata["donorCoversFee"] == "true"
    assert intent.metadata["originalAmount"] == "10000"
    assert intent.payment_intent_id.startswith("mock_pi_")


@pytest.mark.asyncio
async def test_same_key_and_params_replays_first_result(mock_gateway):
    first = await mock_gateway.create_payment_intent(_intent())
    second = await mock_gateway.create_payment_intent(_intent())
    assert first == second
    assert mock_gateway.effects == [("payment_intent", first.payment_intent_id)]


@pytest.mark.asyncio
async def test_same_key_with_different_params_is_rejected(mock_gateway):
    await mock_gateway.create_payment_intent(_intent())
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.create_payment_intent(_intent(amount=5000))
    assert exc.value.error_code == PaymentErrorCode.IDEMPOTENCY_KEY_REUSED
    assert len(mock_gateway.effects) == 1


@pytest.mark.asyncio
async def test_money_moving_calls_require_a_key(mock_gateway):
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.create_payment_intent(_intent(key=None))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token,code",
    [
        ("pm_card_declined", PaymentErrorCode.CARD_DECLINED),
        ("pm_insufficient_funds", PaymentErrorCode.INSUFFICIENT_FUNDS),
        ("pm_expired_card", PaymentErrorCode.EXPIRED_CARD),
        ("pm_invalid_card", PaymentErrorCode.INVALID_CARD),
    ],
)
async def test_decline_tokens_fail_without_side_effects(mock_gateway, token, code):
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.create_payment_intent(_intent(payment_method_token=token))
    assert exc.value.error_code == code
    assert exc.value.processor == "mock"
    assert mock_gateway.effects == []


@pytest.mark.asyncio
async def test_confirm_twice_returns_same_charge(mock_gateway):
    intent = await mock_gateway.create_payment_intent(_intent())
    first = await mock_gateway.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))
    second = await mock_gateway.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))
    assert first.status == PaymentStatus.SUCCESS
    assert first.transaction_id == second.transaction_id
    assert first.amount == 10320
    assert first.net_amount == 10000
    assert [kind for kind, _ in mock_gateway.effects] == ["payment_intent", "charge"]


@pytest.mark.asyncio
async def test_confirm_unknown_intent_fails(mock_gateway):
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.confirm_payment(ConfirmPayment(payment_intent_id="mock_pi_missing"))
    assert exc.value.error_code == PaymentErrorCode.PAYMENT_FAILED


@pytest.mark.asyncio
async def test_partial_refunds_are_capped_at_the_charge(mock_gateway):
    intent = await mock_gateway.create_payment_intent(_intent())
    charge = await mock_gateway.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))

    first = await mock_gateway.refund_payment(
        RefundRequest(transaction_id=charge.transaction_id, amount=10000, idempotency_key="r-1")
    )
    assert first.status == RefundStatus.SUCCEEDED
    assert first.amount == 10000

    rest = await mock_gateway.refund_payment(
        RefundRequest(payment_intent_id=intent.payment_intent_id, idempotency_key="r-2")
    )
    assert rest.amount == 320

    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.refund_payment(
            RefundRequest(transaction_id=charge.transaction_id, amount=1, idempotency_key="r-3")
        )
    assert exc.value.error_code == PaymentErrorCode.REFUND_FAILED


@pytest.mark.asyncio
async def test_refund_replay_does_not_refund_twice(mock_gateway):
    intent = await mock_gateway.create_payment_intent(_intent())
    charge = await mock_gateway.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))
    req = RefundRequest(transaction_id=charge.transaction_id, amount=500, idempotency_key="r-1")
    first = await mock_gateway.refund_payment(req)
    second = await mock_gateway.refund_payment(req)
    assert first.refund_id == second.refund_id
    assert mock_gateway.charges[charge.transaction_id]["refunded"] == 500


@pytest.mark.asyncio
async def test_scripted_failures_count_down(mock_gateway):
    mock_gateway.fail_with(PaymentErrorCode.TIMEOUT, times=1, operation="create_payment_intent")
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.create_payment_intent(_intent())
    assert exc.value.error_code == PaymentErrorCode.TIMEOUT
    assert mock_gateway.effects == []

    intent = await mock_gateway.create_payment_intent(_intent())
    assert intent.amount == 10320
    assert mock_gateway.call_counts["create_payment_intent"] == 2


@pytest.mark.asyncio
async def test_lost_response_is_recovered_by_key_replay(mock_gateway):
    mock_gateway.fail_with(PaymentErrorCode.TIMEOUT, times=1, after_effect=True)
    with pytest.raises(PaymentAdapterError):
        await mock_gateway.create_payment_intent(_intent())
    assert len(mock_gateway.effects) == 1

    intent = await mock_gateway.create_payment_intent(_intent())
    assert mock_gateway.effects == [("payment_intent", intent.payment_intent_id)]


@pytest.mark.asyncio
async def test_mandate_lifecycle(mock_gateway):
    created = await mock_gateway.create_recurring_mandate(
        CreateRecurringMandate(
            amount=2500,
            frequency=RecurringFrequency.MONTHLY,
            donor_email="donor@example.org",
            idempotency_key="m-1",
        )
    )
    assert created.status == MandateStatus.ACTIVE
    assert created.amount == 2500
    assert created.next_charge_date == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)

    updated = await mock_gateway.update_recurring_mandate(
        UpdateRecurringMandate(mandate_id=created.mandate_id, amount=5000)
    )
    assert updated.status == MandateStatus.ACTIVE
    assert updated.amount == 5000

    cancelled = await mock_gateway.cancel_recurring_mandate(
        CancelRecurringMandate(mandate_id=created.mandate_id, reason="donor request")
    )
    assert cancelled.status == MandateStatus.CANCELLED
    again = await mock_gateway.cancel_recurring_mandate(CancelRecurringMandate(mandate_id=created.mandate_id))
    assert again.status == MandateStatus.CANCELLED

    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.update_recurring_mandate(
            UpdateRecurringMandate(mandate_id=created.mandate_id, amount=1000)
        )
    assert exc.value.error_code == PaymentErrorCode.MANDATE_UPDATE_FAILED


@pytest.mark.asyncio
async def test_update_unknown_mandate_fails(mock_gateway):
    with pytest.raises(PaymentAdapterError) as exc:
        await mock_gateway.update_recurring_mandate(UpdateRecurringMandate(mandate_id="nope", amount=100))
    assert exc.value.error_code == PaymentErrorCode.MANDATE_UPDATE_FAILED


@pytest.mark.asyncio
async def test_reset_clears_state(mock_gateway):
    await mock_gateway.create_payment_intent(_intent())
    mock_gateway.fail_with(PaymentErrorCode.API_ERROR)
    mock_gateway.reset()
    assert mock_gateway.effects == []
    assert mock_gateway.intents == {}
    await mock_gateway.create_payment_intent(_intent())


def test_hosted_fields_config(mock_gateway):
    result = mock_gateway.get_hosted_fields_config(HostedFieldsConfig(amount=1000, currency="EUR"))
    assert result.public_key == "mock_pk_test_123456"
    assert result.configuration["currency"] == "EUR"
