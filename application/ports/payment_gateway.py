"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements one adapter
per processor plus a deterministic test double.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CancelRecurringMandate,
    ConfirmPayment,
    CreatePaymentIntent,
    CreateRecurringMandate,
    FeeCalculation,
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
)
from domain.payment.entity import Currency


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment processors.

    Network operations are async; fee calculation and webhook verify/parse
    are pure and synchronous. Every failure is raised as a
    PaymentAdapterError carrying a processor-agnostic code.
    """

    provider: str
    signature_header: Optional[str]
    capabilities: GatewayCapabilities

    def calculate_fees(self, amount: int, donor_covers_fee: bool, currency: Currency | str = ...) -> FeeCalculation: ...

    async def create_payment_intent(self, req: CreatePaymentIntent) -> PaymentIntentResult: ...

    async def confirm_payment(self, req: ConfirmPayment) -> PaymentConfirmationResult: ...

    async def refund_payment(self, req: RefundRequest) -> RefundResult: ...

    async def create_recurring_mandate(self, req: CreateRecurringMandate) -> RecurringMandateResult: ...

    async def update_recurring_mandate(self, req: UpdateRecurringMandate) -> RecurringMandateResult: ...

    async def cancel_recurring_mandate(self, req: CancelRecurringMandate) -> RecurringMandateResult: ...

    def verify_webhook_signature(
        self, payload: bytes | str, signature: Optional[str], secret: Optional[str] = None
    ) -> bool: ...

    def parse_webhook_event(self, payload: bytes | str | dict) -> WebhookEvent: ...

    def parse_webhook_events(self, payload: bytes | str | dict) -> list[WebhookEvent]: ...

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult: ...

    async def aclose(self) -> None: ...
