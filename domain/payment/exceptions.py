"""
Payment error taxonomy mapped onto the unified BusinessException.

Every adapter failure surfaces as exactly one PaymentAdapterError carrying a
processor-agnostic PaymentErrorCode plus vendor diagnostics for staff.
"""
from __future__ import annotations

from typing import Any, Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import (
    ERROR_CATEGORY,
    ERROR_TO_PAYMENT_CODE,
    TRANSIENT_CODES,
    USER_MESSAGES,
    ErrorCategory,
    PaymentErrorCode,
)


class PaymentAdapterError(BusinessException):
    error_type_name = "PaymentAdapterError"

    def __init__(
        self,
        error_code: PaymentErrorCode | str,
        message: Optional[str] = None,
        *,
        processor: Optional[str] = None,
        processor_code: Optional[str] = None,
        processor_message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        code = PaymentErrorCode(error_code)
        full_details: dict[str, Any] = {
            "error_code": code.value,
            "processor": processor,
            "processor_code": processor_code,
        }
        if details:
            full_details.update(details)
        super().__init__(
            code=ERROR_TO_PAYMENT_CODE[code],
            message=message or USER_MESSAGES[code],
            error_type=self.error_type_name,
            details=full_details,
            message_key=USER_MESSAGES[code],
            format_params={},
        )
        self.error_code = code
        self.processor = processor
        self.processor_code = processor_code
        self.processor_message = processor_message

    @property
    def category(self) -> ErrorCategory:
        return ERROR_CATEGORY[self.error_code]

    def is_retryable(self) -> bool:
        return self.error_code in TRANSIENT_CODES

    def user_message(self) -> str:
        """Stable donor-facing copy (gettext msgid, translated at the API edge)."""
        return USER_MESSAGES[self.error_code]

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code.value!r}, "
            f"processor={self.processor!r}, processor_code={self.processor_code!r})"
        )


class PaymentRecoverableError(PaymentAdapterError):
    error_type_name = "PaymentRecoverableError"


class PaymentDeclinedError(PaymentAdapterError):
    error_type_name = "PaymentDeclinedError"


class PaymentSignatureError(PaymentAdapterError):
    error_type_name = "PaymentSignatureError"


class PaymentConfigurationError(PaymentAdapterError):
    error_type_name = "PaymentConfigurationError"


_CLASS_BY_CATEGORY: dict[ErrorCategory, type[PaymentAdapterError]] = {
    ErrorCategory.TRANSIENT: PaymentRecoverableError,
    ErrorCategory.DONOR: PaymentDeclinedError,
    ErrorCategory.INTEGRITY: PaymentSignatureError,
    ErrorCategory.CONFIGURATION: PaymentConfigurationError,
}


def payment_error(
    error_code: PaymentErrorCode | str,
    message: Optional[str] = None,
    **kwargs: Any,
) -> PaymentAdapterError:
    """Build the most specific PaymentAdapterError subclass for a code."""
    code = PaymentErrorCode(error_code)
    cls = _CLASS_BY_CATEGORY.get(ERROR_CATEGORY[code], PaymentAdapterError)
    return cls(code, message, **kwargs)
