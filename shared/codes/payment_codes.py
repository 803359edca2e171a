"""
Payment specific codes, error taxonomy and provider status/event mapping.
"""
from __future__ import annotations

from enum import Enum, IntEnum


class PaymentErrorCode(str, Enum):
    """Processor-agnostic error vocabulary shared by every adapter."""

    # Transient
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    API_ERROR = "API_ERROR"

    # Configuration
    INVALID_API_KEY = "INVALID_API_KEY"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Donor-facing
    CARD_DECLINED = "CARD_DECLINED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    EXPIRED_CARD = "EXPIRED_CARD"
    INVALID_CARD = "INVALID_CARD"
    PAYMENT_FAILED = "PAYMENT_FAILED"

    # Integrity
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    WEBHOOK_PROCESSING_FAILED = "WEBHOOK_PROCESSING_FAILED"

    # Idempotency
    IDEMPOTENCY_KEY_REUSED = "IDEMPOTENCY_KEY_REUSED"

    # Operation
    REFUND_FAILED = "REFUND_FAILED"
    MANDATE_CREATION_FAILED = "MANDATE_CREATION_FAILED"
    MANDATE_UPDATE_FAILED = "MANDATE_UPDATE_FAILED"
    OPERATION_NOT_SUPPORTED = "OPERATION_NOT_SUPPORTED"

    # Validation
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_CURRENCY = "INVALID_CURRENCY"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    DONOR = "donor"
    INTEGRITY = "integrity"
    IDEMPOTENCY = "idempotency"
    OPERATION = "operation"
    VALIDATION = "validation"


class PaymentCode(IntEnum):
    """Numeric business codes used in the response envelope (6xxxx)."""

    SUCCESS = 0

    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    DECLINED = 60004
    CONFIGURATION_ERROR = 60005
    IDEMPOTENCY_CONFLICT = 60006
    OPERATION_FAILED = 60007
    NOT_SUPPORTED = 60008
    INVALID_REQUEST = 60009
    WEBHOOK_INVALID = 60010


TRANSIENT_CODES = frozenset(
    {
        PaymentErrorCode.NETWORK_ERROR,
        PaymentErrorCode.TIMEOUT,
        PaymentErrorCode.API_ERROR,
    }
)


ERROR_CATEGORY: dict[PaymentErrorCode, ErrorCategory] = {
    PaymentErrorCode.NETWORK_ERROR: ErrorCategory.TRANSIENT,
    PaymentErrorCode.TIMEOUT: ErrorCategory.TRANSIENT,
    PaymentErrorCode.API_ERROR: ErrorCategory.TRANSIENT,
    PaymentErrorCode.INVALID_API_KEY: ErrorCategory.CONFIGURATION,
    PaymentErrorCode.AUTHENTICATION_FAILED: ErrorCategory.CONFIGURATION,
    PaymentErrorCode.CONFIGURATION_ERROR: ErrorCategory.CONFIGURATION,
    PaymentErrorCode.CARD_DECLINED: ErrorCategory.DONOR,
    PaymentErrorCode.INSUFFICIENT_FUNDS: ErrorCategory.DONOR,
    PaymentErrorCode.EXPIRED_CARD: ErrorCategory.DONOR,
    PaymentErrorCode.INVALID_CARD: ErrorCategory.DONOR,
    PaymentErrorCode.PAYMENT_FAILED: ErrorCategory.DONOR,
    PaymentErrorCode.INVALID_SIGNATURE: ErrorCategory.INTEGRITY,
    PaymentErrorCode.WEBHOOK_PROCESSING_FAILED: ErrorCategory.INTEGRITY,
    PaymentErrorCode.IDEMPOTENCY_KEY_REUSED: ErrorCategory.IDEMPOTENCY,
    PaymentErrorCode.REFUND_FAILED: ErrorCategory.OPERATION,
    PaymentErrorCode.MANDATE_CREATION_FAILED: ErrorCategory.OPERATION,
    PaymentErrorCode.MANDATE_UPDATE_FAILED: ErrorCategory.OPERATION,
    PaymentErrorCode.OPERATION_NOT_SUPPORTED: ErrorCategory.OPERATION,
    PaymentErrorCode.INVALID_REQUEST: ErrorCategory.VALIDATION,
    PaymentErrorCode.INVALID_AMOUNT: ErrorCategory.VALIDATION,
    PaymentErrorCode.INVALID_CURRENCY: ErrorCategory.VALIDATION,
    PaymentErrorCode.UNKNOWN_ERROR: ErrorCategory.VALIDATION,
}


ERROR_TO_PAYMENT_CODE: dict[PaymentErrorCode, PaymentCode] = {
    PaymentErrorCode.NETWORK_ERROR: PaymentCode.PROVIDER_RECOVERABLE,
    PaymentErrorCode.TIMEOUT: PaymentCode.TIMEOUT,
    PaymentErrorCode.API_ERROR: PaymentCode.PROVIDER_RECOVERABLE,
    PaymentErrorCode.INVALID_API_KEY: PaymentCode.CONFIGURATION_ERROR,
    PaymentErrorCode.AUTHENTICATION_FAILED: PaymentCode.CONFIGURATION_ERROR,
    PaymentErrorCode.CONFIGURATION_ERROR: PaymentCode.CONFIGURATION_ERROR,
    PaymentErrorCode.CARD_DECLINED: PaymentCode.DECLINED,
    PaymentErrorCode.INSUFFICIENT_FUNDS: PaymentCode.DECLINED,
    PaymentErrorCode.EXPIRED_CARD: PaymentCode.DECLINED,
    PaymentErrorCode.INVALID_CARD: PaymentCode.DECLINED,
    PaymentErrorCode.PAYMENT_FAILED: PaymentCode.DECLINED,
    PaymentErrorCode.INVALID_SIGNATURE: PaymentCode.SIGNATURE_ERROR,
    PaymentErrorCode.WEBHOOK_PROCESSING_FAILED: PaymentCode.WEBHOOK_INVALID,
    PaymentErrorCode.IDEMPOTENCY_KEY_REUSED: PaymentCode.IDEMPOTENCY_CONFLICT,
    PaymentErrorCode.REFUND_FAILED: PaymentCode.OPERATION_FAILED,
    PaymentErrorCode.MANDATE_CREATION_FAILED: PaymentCode.OPERATION_FAILED,
    PaymentErrorCode.MANDATE_UPDATE_FAILED: PaymentCode.OPERATION_FAILED,
    PaymentErrorCode.OPERATION_NOT_SUPPORTED: PaymentCode.NOT_SUPPORTED,
    PaymentErrorCode.INVALID_REQUEST: PaymentCode.INVALID_REQUEST,
    PaymentErrorCode.INVALID_AMOUNT: PaymentCode.INVALID_REQUEST,
    PaymentErrorCode.INVALID_CURRENCY: PaymentCode.INVALID_REQUEST,
    PaymentErrorCode.UNKNOWN_ERROR: PaymentCode.PROVIDER_ERROR,
}


# Donor/staff facing copy; used as gettext msgids.
USER_MESSAGES: dict[PaymentErrorCode, str] = {
    PaymentErrorCode.NETWORK_ERROR: "We could not reach the payment provider. Please try again.",
    PaymentErrorCode.TIMEOUT: "The payment provider took too long to respond. Please try again.",
    PaymentErrorCode.API_ERROR: "The payment provider is having trouble right now. Please try again shortly.",
    PaymentErrorCode.INVALID_API_KEY: "Payments are not configured correctly. Please contact the organization.",
    PaymentErrorCode.AUTHENTICATION_FAILED: "Payments are not configured correctly. Please contact the organization.",
    PaymentErrorCode.CONFIGURATION_ERROR: "This payment method is not available right now.",
    PaymentErrorCode.CARD_DECLINED: "Your card was declined. Please try another payment method.",
    PaymentErrorCode.INSUFFICIENT_FUNDS: "Your card has insufficient funds. Please try another payment method.",
    PaymentErrorCode.EXPIRED_CARD: "Your card has expired. Please use a different card.",
    PaymentErrorCode.INVALID_CARD: "The card details look incorrect. Please check them and try again.",
    PaymentErrorCode.PAYMENT_FAILED: "Your payment could not be completed. Please try again.",
    PaymentErrorCode.INVALID_SIGNATURE: "The notification signature could not be verified.",
    PaymentErrorCode.WEBHOOK_PROCESSING_FAILED: "The payment notification could not be processed.",
    PaymentErrorCode.IDEMPOTENCY_KEY_REUSED: "This request was already submitted with different details.",
    PaymentErrorCode.REFUND_FAILED: "The refund could not be processed.",
    PaymentErrorCode.MANDATE_CREATION_FAILED: "The recurring donation could not be set up.",
    PaymentErrorCode.MANDATE_UPDATE_FAILED: "The recurring donation could not be changed.",
    PaymentErrorCode.OPERATION_NOT_SUPPORTED: "This change is not supported for the selected payment provider.",
    PaymentErrorCode.INVALID_REQUEST: "The payment request is invalid.",
    PaymentErrorCode.INVALID_AMOUNT: "Please enter a valid donation amount.",
    PaymentErrorCode.INVALID_CURRENCY: "This currency is not supported.",
    PaymentErrorCode.UNKNOWN_ERROR: "Something went wrong with your payment. Please try again.",
}


# Provider→internal payment status mapping
PROVIDER_STATUS_TO_INTERNAL: dict[str, dict[str, str]] = {
    "stripe": {
        "requires_payment_method": "pending",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "pending",
        "requires_capture": "pending",
        "succeeded": "success",
        "canceled": "cancelled",
    },
    "paypal": {
        # Orders v2 status
        "CREATED": "pending",
        "SAVED": "pending",
        "APPROVED": "pending",
        "PAYER_ACTION_REQUIRED": "pending",
        "COMPLETED": "success",
        "VOIDED": "cancelled",
        # Capture status
        "PENDING": "pending",
        "DECLINED": "failed",
        "FAILED": "failed",
    },
    "adyen": {
        # Checkout resultCode
        "Authorised": "success",
        "Received": "pending",
        "Pending": "pending",
        "PresentToShopper": "pending",
        "RedirectShopper": "pending",
        "IdentifyShopper": "pending",
        "ChallengeShopper": "pending",
        "Cancelled": "cancelled",
        "Refused": "failed",
        "Error": "failed",
    },
}


# Provider→internal mandate status mapping
PROVIDER_MANDATE_STATUS_TO_INTERNAL: dict[str, dict[str, str]] = {
    "stripe": {
        "active": "active",
        "trialing": "active",
        "canceled": "cancelled",
        "incomplete_expired": "cancelled",
    },
    "paypal": {
        "ACTIVE": "active",
        "APPROVED": "active",
        "SUSPENDED": "cancelled",
        "CANCELLED": "cancelled",
        "EXPIRED": "cancelled",
    },
}


# Provider→normalized webhook event type mapping
PROVIDER_EVENT_TO_INTERNAL: dict[str, dict[str, str]] = {
    "stripe": {
        "payment_intent.succeeded": "payment.succeeded",
        "payment_intent.payment_failed": "payment.failed",
        "payment_intent.processing": "payment.pending",
        "charge.refunded": "payment.refunded",
        "charge.dispute.created": "payment.disputed",
        "customer.subscription.created": "mandate.created",
        "customer.subscription.updated": "mandate.updated",
        "customer.subscription.deleted": "mandate.cancelled",
        "invoice.payment_failed": "mandate.failed",
        "payout.paid": "payout.paid",
    },
    "paypal": {
        "PAYMENT.CAPTURE.COMPLETED": "payment.succeeded",
        "PAYMENT.CAPTURE.DENIED": "payment.failed",
        "PAYMENT.CAPTURE.PENDING": "payment.pending",
        "PAYMENT.CAPTURE.REFUNDED": "payment.refunded",
        "CUSTOMER.DISPUTE.CREATED": "payment.disputed",
        "BILLING.SUBSCRIPTION.CREATED": "mandate.created",
        "BILLING.SUBSCRIPTION.ACTIVATED": "mandate.updated",
        "BILLING.SUBSCRIPTION.UPDATED": "mandate.updated",
        "BILLING.SUBSCRIPTION.CANCELLED": "mandate.cancelled",
        "BILLING.SUBSCRIPTION.PAYMENT.FAILED": "mandate.failed",
    },
    "adyen": {
        "AUTHORISATION": "payment.succeeded",
        "REFUND": "payment.refunded",
        "CANCEL_OR_REFUND": "payment.refunded",
        "REFUND_FAILED": "payment.failed",
        "CHARGEBACK": "payment.chargeback",
        "NOTIFICATION_OF_CHARGEBACK": "payment.disputed",
        "DISPUTE": "payment.disputed",
        "RECURRING_CONTRACT": "mandate.created",
        "DISABLE_RECURRING": "mandate.cancelled",
        "PAYOUT_THIRDPARTY": "payout.paid",
    },
    "mock": {
        "payment.succeeded": "payment.succeeded",
        "payment.failed": "payment.failed",
        "payment.pending": "payment.pending",
        "payment.refunded": "payment.refunded",
        "payment.disputed": "payment.disputed",
        "payment.chargeback": "payment.chargeback",
        "mandate.created": "mandate.created",
        "mandate.updated": "mandate.updated",
        "mandate.cancelled": "mandate.cancelled",
        "mandate.failed": "mandate.failed",
        "payout.paid": "payout.paid",
    },
}
