import pytest

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    RefundRequest,
    UpdateRecurringMandate,
)
from application.services.payment_service import PaymentService, ensure_idempotency_key
from domain.payment.entity import MandateStatus, PaymentStatus
from domain.payment.exceptions import PaymentAdapterError
from shared.codes.payment_codes import PaymentErrorCode


def _intent(**overrides):
    data = dict(
        amount=10000,
        donor_email="Donor@Example.org",
        donor_covers_fee=True,
        metadata={"donation_id": "d-42", "utm_source": "newsletter"},
    )
    data.update(overrides)
    return CreatePaymentIntent(**data)


@pytest.fixture
def service(mock_gateway, executor):
    return PaymentService(mock_gateway, executor)


def test_idempotency_key_is_derived_from_business_fields():
    key = ensure_idempotency_key(_intent(), "mock")
    assert len(key) == 64
    assert ensure_idempotency_key(_intent(donor_email="donor@example.org"), "mock") == key
    assert ensure_idempotency_key(_intent(metadata={"donation_id": "d-42", "utm_source": "x"}), "mock") == key
    assert ensure_idempotency_key(_intent(amount=5000), "mock") != key
    assert ensure_idempotency_key(_intent(), "stripe") != key
    assert ensure_idempotency_key(_intent(metadata={"donation_id": "d-43"}), "mock") != key


def test_explicit_idempotency_key_is_kept():
    req = _intent(idempotency_key="caller-key")
    assert ensure_idempotency_key(req, "mock") == "caller-key"


def test_refund_and_mandate_keys_differ():
    refund = RefundRequest(transaction_id="ch_1", amount=100, metadata={"refund_id": "r-1"})
    mandate = CreateRecurringMandate(amount=100, frequency="monthly", donor_email="a@b.c", metadata={"donation_id": "d-1"})
    assert ensure_idempotency_key(refund, "mock") != ensure_idempotency_key(mandate, "mock")


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_the_same_key(service, mock_gateway, sleeps):
    mock_gateway.fail_with(PaymentErrorCode.NETWORK_ERROR, times=2, operation="create_payment_intent")
    intent = await service.create_payment_intent(_intent())
    assert intent.amount == 10320
    assert mock_gateway.call_counts["create_payment_intent"] == 3
    assert sleeps == [1, 2]
    assert len(mock_gateway.effects) == 1


@pytest.mark.asyncio
async def test_timeout_after_vendor_applied_charge_does_not_double_charge(service, mock_gateway):
    intent = await service.create_payment_intent(_intent())
    mock_gateway.fail_with(PaymentErrorCode.TIMEOUT, times=1, operation="confirm_payment", after_effect=True)
    confirmed = await service.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))
    assert confirmed.status == PaymentStatus.SUCCESS
    assert [kind for kind, _ in mock_gateway.effects].count("charge") == 1

    mock_gateway.fail_with(PaymentErrorCode.TIMEOUT, times=1, operation="refund_payment", after_effect=True)
    refund = await service.refund_payment(RefundRequest(transaction_id=confirmed.transaction_id, amount=1000, metadata={"refund_id": "r-1"}))
    assert refund.amount == 1000
    assert [kind for kind, _ in mock_gateway.effects].count("refund") == 1
    assert mock_gateway.charges[confirmed.transaction_id]["refunded"] == 1000


@pytest.mark.asyncio
async def test_declines_surface_immediately(service, mock_gateway, sleeps):
    with pytest.raises(PaymentAdapterError) as exc:
        await service.create_payment_intent(_intent(payment_method_token="pm_card_declined"))
    assert exc.value.error_code == PaymentErrorCode.CARD_DECLINED
    assert mock_gateway.call_counts["create_payment_intent"] == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_transient_error(service, mock_gateway):
    mock_gateway.fail_with(PaymentErrorCode.API_ERROR, operation="create_recurring_mandate")
    with pytest.raises(PaymentAdapterError) as exc:
        await service.create_recurring_mandate(
            CreateRecurringMandate(
                amount=2500, frequency="monthly", donor_email="donor@example.org", metadata={"donation_id": "d-7"}
            )
        )
    assert exc.value.error_code == PaymentErrorCode.API_ERROR
    assert exc.value.is_retryable()
    assert mock_gateway.call_counts["create_recurring_mandate"] == 3
    assert mock_gateway.mandates == {}


@pytest.mark.asyncio
async def test_mandate_flow_through_service(service):
    created = await service.create_recurring_mandate(
        CreateRecurringMandate(
            amount=2500, frequency="quarterly", donor_email="donor@example.org", metadata={"donation_id": "d-8"}
        )
    )
    updated = await service.update_recurring_mandate(UpdateRecurringMandate(mandate_id=created.mandate_id, amount=3000))
    assert updated.amount == 3000
    cancelled = await service.cancel_recurring_mandate(CancelRecurringMandate(mandate_id=created.mandate_id))
    assert cancelled.status == MandateStatus.CANCELLED


def test_fees_delegate_to_gateway(service):
    assert service.calculate_fees(10000, True).total_amount == 10320
    assert service.provider == "mock"


@pytest.mark.parametrize(
    "req",
    [
        CreatePaymentIntent(amount=2500, donor_email="d@example.org", metadata={"utm_source": "mail"}),
        CreateRecurringMandate(amount=2500, frequency="monthly", donor_email="d@example.org"),
        RefundRequest(payment_intent_id="pi_1", amount=500, metadata={"donation_id": "d-1"}),
    ],
)
def test_key_derivation_requires_a_unique_anchor(req):
    with pytest.raises(PaymentAdapterError) as exc:
        ensure_idempotency_key(req, "mock")
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST
    assert req.idempotency_key is None


@pytest.mark.asyncio
async def test_separate_gifts_of_the_same_amount_stay_separate(service, mock_gateway):
    first = await service.create_payment_intent(
        CreatePaymentIntent(amount=2500, donor_email="d@example.org", metadata={"donation_id": "d-1"})
    )
    second = await service.create_payment_intent(
        CreatePaymentIntent(amount=2500, donor_email="d@example.org", metadata={"donation_id": "d-2"})
    )
    assert first.payment_intent_id != second.payment_intent_id


@pytest.mark.asyncio
async def test_partial_refunds_of_the_same_amount_stay_separate(service, mock_gateway):
    intent = await service.create_payment_intent(_intent())
    confirmed = await service.confirm_payment(ConfirmPayment(payment_intent_id=intent.payment_intent_id))
    first = await service.refund_payment(
        RefundRequest(transaction_id=confirmed.transaction_id, amount=500, metadata={"refund_id": "r-1"})
    )
    second = await service.refund_payment(
        RefundRequest(transaction_id=confirmed.transaction_id, amount=500, metadata={"refund_id": "r-2"})
    )
    assert first.refund_id != second.refund_id
    assert [kind for kind, _ in mock_gateway.effects].count("refund") == 2
    assert mock_gateway.charges[confirmed.transaction_id]["refunded"] == 1000


@pytest.mark.asyncio
async def test_refund_without_key_or_anchor_never_reaches_the_gateway(service, mock_gateway):
    with pytest.raises(PaymentAdapterError) as exc:
        await service.refund_payment(RefundRequest(transaction_id="mock_ch_1", amount=500))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST
    assert mock_gateway.call_counts["refund_payment"] == 0
