"""
Status codes shared across layers.

``BusinessCode`` is the generic envelope code space. Payment codes live in
``shared.codes.payment_codes`` (6xxxx) and are re-exported here.
"""
from enum import IntEnum

from .payment_codes import PaymentCode, PaymentErrorCode


class BusinessCode(IntEnum):
    SUCCESS = 0

    # Request errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # unknown processor or resource

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002

    # System errors (4xxxx); SERVICE_UNAVAILABLE covers the webhook dedupe store
    SYSTEM_ERROR = 40000
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003

    # Rate limiting (5xxxx)
    RATE_LIMIT_ERROR = 50000
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode", "PaymentCode", "PaymentErrorCode"]
