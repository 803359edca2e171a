import json

import httpx
import pytest
import respx

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    HostedFieldsConfig,
    RefundRequest,
    UpdateRecurringMandate,
)
from core.settings import AdyenSettings
from domain.payment.entity import MandateStatus, PaymentStatus, RecurringFrequency, RefundStatus, WebhookEventType
from domain.payment.exceptions import PaymentAdapterError
from infrastructure.external.payments.adyen_client import TEST_BASE_URL as API, AdyenClient, sign_notification_item
from shared.codes.payment_codes import PaymentErrorCode


CARD = {"type": "scheme", "encryptedCardNumber": "adyenjs_0_1_25$...", "encryptedSecurityCode": "adyenjs_0_1_25$..."}
STORED = {"storedPaymentMethods": [{"id": "M5N7TQ4TG5PFWR50", "type": "scheme"}]}


def _intent_req(**overrides):
    data = dict(
        amount=10000,
        donor_email="donor@example.org",
        donor_name="Ada Lovelace",
        donor_covers_fee=True,
        payment_method_data=CARD,
        idempotency_key="key-1",
    )
    data.update(overrides)
    return CreatePaymentIntent(**data)


def test_live_mode_requires_url_prefix():
    with pytest.raises(PaymentAdapterError) as exc:
        AdyenClient(AdyenSettings(api_key="k", merchant_account="M", test_mode=False))
    assert exc.value.error_code == PaymentErrorCode.CONFIGURATION_ERROR

    client = AdyenClient(AdyenSettings(api_key="k", merchant_account="M", test_mode=False, live_url_prefix="abc123"))
    assert client.base_url == "https://abc123-checkout-live.adyenpayments.com/checkout/v70"


@pytest.mark.asyncio
async def test_authorised_payment(adyen_client):
    with respx.mock(assert_all_called=True) as router:
        route = router.post(f"{API}/payments").respond(
            200, json={"pspReference": "8815", "resultCode": "Authorised", "merchantReference": "key-1"}
        )
        intent = await adyen_client.create_payment_intent(_intent_req())

    request = route.calls.last.request
    assert request.headers["X-API-Key"] == "adyen-key"
    assert request.headers["Idempotency-Key"] == "key-1"
    body = json.loads(request.content)
    assert body["amount"] == {"value": 10320, "currency": "USD"}
    assert body["merchantAccount"] == "DonationsECOM"
    assert body["paymentMethod"] == CARD
    assert body["shopperName"] == {"firstName": "Ada", "lastName": "Lovelace"}
    assert body["metadata"]["originalAmount"] == "10000"

    assert intent.payment_intent_id == "8815"
    assert intent.status == PaymentStatus.SUCCESS
    assert intent.processor_fee == 275


@pytest.mark.asyncio
async def test_redirect_action_is_returned_to_client(adyen_client):
    action = {"type": "redirect", "url": "https://test.adyen.com/hpp/3d/validate.shtml", "method": "GET"}
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(200, json={"pspReference": "8816", "resultCode": "RedirectShopper", "action": action})
        intent = await adyen_client.create_payment_intent(_intent_req())
    assert intent.status == PaymentStatus.PENDING
    assert intent.client_secret == action["url"]
    assert intent.metadata["action"] == action


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reason_code,expected",
    [("12", PaymentErrorCode.INSUFFICIENT_FUNDS), ("6", PaymentErrorCode.EXPIRED_CARD), ("2", PaymentErrorCode.CARD_DECLINED), ("99", PaymentErrorCode.PAYMENT_FAILED)],
)
async def test_refusals_are_translated(adyen_client, reason_code, expected):
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(
            200,
            json={"pspReference": "8817", "resultCode": "Refused", "refusalReason": "Refused", "refusalReasonCode": reason_code},
        )
        with pytest.raises(PaymentAdapterError) as exc:
            await adyen_client.create_payment_intent(_intent_req())
    assert exc.value.error_code == expected
    assert exc.value.details["psp_reference"] == "8817"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code,error_code,expected",
    [
        (401, "000", PaymentErrorCode.UNKNOWN_ERROR),
        (403, "901", PaymentErrorCode.INVALID_API_KEY),
        (422, "704", PaymentErrorCode.IDEMPOTENCY_KEY_REUSED),
        (500, "999", PaymentErrorCode.API_ERROR),
    ],
)
async def test_api_errors_are_translated(adyen_client, status_code, error_code, expected):
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(
            status_code, json={"status": status_code, "errorCode": error_code, "message": "boom", "errorType": "security"}
        )
        with pytest.raises(PaymentAdapterError) as exc:
            await adyen_client.create_payment_intent(_intent_req())
    assert exc.value.error_code == expected
    assert exc.value.processor_code == error_code


@pytest.mark.asyncio
async def test_payment_method_is_required(adyen_client):
    with pytest.raises(PaymentAdapterError) as exc:
        await adyen_client.create_payment_intent(_intent_req(payment_method_data=None))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST


@pytest.mark.asyncio
async def test_confirm_without_details_reports_creation_outcome(adyen_client):
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(200, json={"pspReference": "8815", "resultCode": "Authorised"})
        await adyen_client.create_payment_intent(_intent_req())

    recorded = await adyen_client.confirm_payment(ConfirmPayment(payment_intent_id="8815"))
    assert recorded.status == PaymentStatus.SUCCESS
    assert recorded.transaction_id == "8815"
    assert recorded.amount == 10320
    assert recorded.processor_fee == 275

    unknown = await adyen_client.confirm_payment(ConfirmPayment(payment_intent_id="9999"))
    assert unknown.status == PaymentStatus.PENDING
    assert unknown.transaction_id == "9999"


@pytest.mark.asyncio
async def test_confirm_with_redirect_details(adyen_client):
    with respx.mock(assert_all_called=True) as router:
        route = router.post(f"{API}/payments/details").respond(
            200,
            json={"pspReference": "8815", "resultCode": "Authorised", "amount": {"value": 10320, "currency": "USD"}},
        )
        result = await adyen_client.confirm_payment(
            ConfirmPayment(payment_intent_id="8815", details={"redirectResult": "X6XtfGC3"})
        )
    assert json.loads(route.calls.last.request.content) == {"details": {"redirectResult": "X6XtfGC3"}}
    assert result.status == PaymentStatus.SUCCESS
    assert result.amount == 10320


@pytest.mark.asyncio
async def test_refund_is_pending_until_notification(adyen_client):
    with pytest.raises(PaymentAdapterError) as exc:
        await adyen_client.refund_payment(RefundRequest(transaction_id="8815", idempotency_key="rk"))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST

    with pytest.raises(PaymentAdapterError) as exc:
        await adyen_client.refund_payment(RefundRequest(transaction_id="8815", amount=500, idempotency_key="rk"))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST

    with respx.mock(assert_all_called=True) as router:
        route = router.post(f"{API}/payments/8815/refunds").respond(
            201, json={"pspReference": "9915", "status": "received", "paymentPspReference": "8815"}
        )
        refund = await adyen_client.refund_payment(
            RefundRequest(transaction_id="8815", amount=500, currency="EUR", idempotency_key="rk")
        )
    assert json.loads(route.calls.last.request.content)["amount"] == {"value": 500, "currency": "EUR"}
    assert refund.status == RefundStatus.PENDING
    assert refund.refund_id == "9915"


@pytest.mark.asyncio
async def test_mandate_create_and_cancel(adyen_client):
    shopper = AdyenClient.shopper_reference("Donor@Example.org ")
    assert shopper == AdyenClient.shopper_reference("donor@example.org")

    with respx.mock(assert_all_called=True) as router:
        create = router.post(f"{API}/payments").respond(
            200,
            json={
                "pspReference": "8818",
                "resultCode": "Authorised",
                "additionalData": {"tokenization.storedPaymentMethodId": "M5N7TQ4TG5PFWR50"},
            },
        )
        mandate = await adyen_client.create_recurring_mandate(
            CreateRecurringMandate(
                amount=2500,
                frequency=RecurringFrequency.MONTHLY,
                donor_email="donor@example.org",
                payment_method_data=CARD,
                idempotency_key="mk",
            )
        )
        body = json.loads(create.calls.last.request.content)
        assert body["recurringProcessingModel"] == "Subscription"
        assert body["storePaymentMethod"] is True
        assert body["shopperReference"] == shopper
        assert mandate.mandate_id == f"{shopper}:M5N7TQ4TG5PFWR50"
        assert mandate.status == MandateStatus.ACTIVE
        assert mandate.next_charge_date is not None

        router.get(f"{API}/storedPaymentMethods").respond(200, json=STORED)
        delete = router.delete(f"{API}/storedPaymentMethods/M5N7TQ4TG5PFWR50").respond(204)
        cancelled = await adyen_client.cancel_recurring_mandate(CancelRecurringMandate(mandate_id=mandate.mandate_id))

    params = delete.calls.last.request.url.params
    assert params["shopperReference"] == shopper
    assert params["merchantAccount"] == "DonationsECOM"
    assert cancelled.status == MandateStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_twice_disables_once(adyen_client):
    mandate_id = f"{AdyenClient.shopper_reference('donor@example.org')}:M5N7TQ4TG5PFWR50"
    with respx.mock(assert_all_called=True) as router:
        router.get(f"{API}/storedPaymentMethods").mock(
            side_effect=[httpx.Response(200, json=STORED), httpx.Response(200, json={"storedPaymentMethods": []})]
        )
        delete = router.delete(f"{API}/storedPaymentMethods/M5N7TQ4TG5PFWR50").respond(204)
        first = await adyen_client.cancel_recurring_mandate(CancelRecurringMandate(mandate_id=mandate_id, idempotency_key="ck"))
        second = await adyen_client.cancel_recurring_mandate(CancelRecurringMandate(mandate_id=mandate_id, idempotency_key="ck"))

    assert delete.call_count == 1
    assert delete.calls.last.request.headers["Idempotency-Key"] == "ck"
    assert first.status == second.status == MandateStatus.CANCELLED


@pytest.mark.asyncio
async def test_mandate_webhook_carries_the_created_mandate_id(adyen_client):
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(
            200,
            json={
                "pspReference": "8818",
                "resultCode": "Authorised",
                "additionalData": {"tokenization.storedPaymentMethodId": "M5N7TQ4TG5PFWR50"},
            },
        )
        mandate = await adyen_client.create_recurring_mandate(
            CreateRecurringMandate(
                amount=2500,
                frequency=RecurringFrequency.MONTHLY,
                donor_email="donor@example.org",
                payment_method_data=CARD,
                idempotency_key="mk",
            )
        )

    item = {
        "pspReference": "M5N7TQ4TG5PFWR50",
        "originalReference": "8818",
        "merchantAccountCode": "DonationsECOM",
        "merchantReference": "mk",
        "amount": {"value": 0, "currency": "USD"},
        "eventCode": "RECURRING_CONTRACT",
        "success": "true",
    }
    item["additionalData"] = {
        "shopperReference": AdyenClient.shopper_reference("donor@example.org"),
        "recurring.recurringDetailReference": "M5N7TQ4TG5PFWR50",
        "hmacSignature": sign_notification_item(item, adyen_client.config.webhook_secret),
    }
    body = json.dumps({"live": "false", "notificationItems": [{"NotificationRequestItem": item}]})

    assert adyen_client.verify_webhook_signature(body)
    event = adyen_client.parse_webhook_event(body)
    assert event.type == WebhookEventType.MANDATE_CREATED
    assert event.data.mandate_id == mandate.mandate_id


@pytest.mark.asyncio
async def test_mandate_update_is_not_supported(adyen_client):
    with pytest.raises(PaymentAdapterError) as exc:
        await adyen_client.update_recurring_mandate(UpdateRecurringMandate(mandate_id="a:b", amount=100))
    assert exc.value.error_code == PaymentErrorCode.OPERATION_NOT_SUPPORTED


@pytest.mark.asyncio
async def test_malformed_mandate_id_on_cancel(adyen_client):
    with pytest.raises(PaymentAdapterError) as exc:
        await adyen_client.cancel_recurring_mandate(CancelRecurringMandate(mandate_id="no-separator"))
    assert exc.value.error_code == PaymentErrorCode.INVALID_REQUEST


def test_hosted_fields(adyen_client):
    result = adyen_client.get_hosted_fields_config(HostedFieldsConfig(amount=1000, currency="EUR"))
    assert "checkoutshopper-test" in result.script_url
    assert result.public_key == "test_CLIENTKEY"
    assert result.configuration["amount"] == {"value": 1000, "currency": "EUR"}


@pytest.mark.asyncio
async def test_refund_uses_the_currency_the_payment_was_made_in(adyen_client):
    with respx.mock(assert_all_called=True) as router:
        router.post(f"{API}/payments").respond(200, json={"pspReference": "8820", "resultCode": "Authorised"})
        await adyen_client.create_payment_intent(_intent_req(currency="EUR"))
        route = router.post(f"{API}/payments/8820/refunds").respond(
            201, json={"pspReference": "9920", "status": "received", "paymentPspReference": "8820"}
        )
        refund = await adyen_client.refund_payment(RefundRequest(transaction_id="8820", amount=500, idempotency_key="rk"))

    assert json.loads(route.calls.last.request.content)["amount"] == {"value": 500, "currency": "EUR"}
    assert refund.currency.value == "EUR"
