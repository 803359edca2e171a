"""
Base payment client implementing shared concerns: http, timeouts, error
translation, fee calculation, status/event mapping and logging.

Concrete processors subclass and implement vendor-specific logic. Retries are
not handled here; callers wrap money-moving calls in the RetryExecutor.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    FeeCalculation,
    GatewayCapabilities,
    HostedFieldsConfig,
    HostedFieldsResult,
    WebhookEvent,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.entity import (
    Currency,
    PaymentStatus,
    RecurringFrequency,
    WebhookEventType,
    next_charge_date,
)
from domain.payment.exceptions import PaymentAdapterError, payment_error
from domain.payment.fees import MINOR_UNIT_EXPONENT, FeeSchedule, calculate_fees
from shared.codes.payment_codes import (
    PROVIDER_EVENT_TO_INTERNAL,
    PROVIDER_MANDATE_STATUS_TO_INTERNAL,
    PROVIDER_STATUS_TO_INTERNAL,
    PaymentErrorCode,
)


logger = get_logger(__name__)

DEFAULT_TIMEOUTS = {"connect": 5.0, "read": 20.0, "write": 20.0, "total": 30.0}


class BasePaymentClient(PaymentGateway):
    provider: str = "base"
    signature_header: Optional[str] = None
    capabilities: GatewayCapabilities = GatewayCapabilities()

    def __init__(
        self,
        *,
        fee_schedule: FeeSchedule,
        timeouts: Optional[dict[str, float]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.fee_schedule = fee_schedule
        self._timeouts_cfg = timeouts or dict(DEFAULT_TIMEOUTS)
        self._client: Optional[httpx.AsyncClient] = http_client

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        # Kept open for reuse; aclose() releases it.
        yield self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    # Fees
    def calculate_fees(
        self,
        amount: int,
        donor_covers_fee: bool,
        currency: Currency | str = Currency.USD,
    ) -> FeeCalculation:
        return calculate_fees(amount, donor_covers_fee, self.fee_schedule, currency)

    def _fee_metadata(self, amount: int, donor_covers_fee: bool, fees: FeeCalculation) -> dict[str, str]:
        """Pre-fee figures stored on the vendor object for reconciliation."""
        return {
            "donorCoversFee": "true" if donor_covers_fee else "false",
            "originalAmount": str(amount),
            "feeAmount": str(fees.calculated_fee),
        }

    # HTTP
    async def _request(
        self,
        method: str,
        url: str,
        *,
        fallback: PaymentErrorCode = PaymentErrorCode.API_ERROR,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Issue one vendor call and translate every failure into a PaymentAdapterError.

        Timeouts are reported as TIMEOUT (outcome unknown, safe to retry with
        the same idempotency key), other transport failures as NETWORK_ERROR.
        """
        try:
            async with self.client() as client:
                # httpx timeouts are per phase; wait_for bounds the whole attempt
                resp = await asyncio.wait_for(
                    client.request(method, url, **kwargs),
                    timeout=self._timeouts_cfg["total"],
                )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self._log("payment_http_timeout", method=method, url=url)
            raise payment_error(
                PaymentErrorCode.TIMEOUT,
                f"{self.provider} request timed out",
                processor=self.provider,
                processor_message=str(exc),
            ) from exc
        except httpx.TransportError as exc:
            self._log("payment_http_transport_error", method=method, url=url, error=str(exc))
            raise payment_error(
                PaymentErrorCode.NETWORK_ERROR,
                f"{self.provider} request failed: {type(exc).__name__}",
                processor=self.provider,
                processor_message=str(exc),
            ) from exc

        if resp.is_success:
            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                raise payment_error(
                    PaymentErrorCode.API_ERROR,
                    f"{self.provider} returned a non-JSON response",
                    processor=self.provider,
                    details={"http_status": resp.status_code},
                ) from exc
        raise self._translate_error(resp, fallback)

    @staticmethod
    def _safe_json(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _extract_error(self, body: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
        """Return (vendor_code, vendor_message) from an error body."""
        return None, None

    def _map_error_code(self, vendor_code: Optional[str], body: dict[str, Any]) -> Optional[PaymentErrorCode]:
        return None

    def _translate_error(self, resp: httpx.Response, fallback: PaymentErrorCode) -> PaymentAdapterError:
        body = self._safe_json(resp)
        vendor_code, vendor_message = self._extract_error(body)
        code = self._map_error_code(vendor_code, body)
        if code is None:
            code = self._status_fallback(resp.status_code, fallback)
        logger.warning(
            "payment_provider_error",
            provider=self.provider,
            http_status=resp.status_code,
            error_code=code.value,
            processor_code=vendor_code,
        )
        return payment_error(
            code,
            vendor_message or f"{self.provider} returned HTTP {resp.status_code}",
            processor=self.provider,
            processor_code=vendor_code,
            processor_message=vendor_message,
            details={"http_status": resp.status_code},
        )

    @staticmethod
    def _status_fallback(status_code: int, fallback: PaymentErrorCode) -> PaymentErrorCode:
        if status_code in (408, 409, 429) or status_code >= 500:
            return PaymentErrorCode.API_ERROR
        if status_code == 401:
            return PaymentErrorCode.INVALID_API_KEY
        if status_code == 403:
            return PaymentErrorCode.AUTHENTICATION_FAILED
        return fallback

    # Guards
    def _require_idempotency_key(self, key: Optional[str], operation: str) -> str:
        if not key:
            raise payment_error(
                PaymentErrorCode.INVALID_REQUEST,
                f"{operation} requires an idempotency key",
                processor=self.provider,
            )
        return key

    def _not_supported(self, operation: str, hint: str) -> PaymentAdapterError:
        return payment_error(
            PaymentErrorCode.OPERATION_NOT_SUPPORTED,
            f"{self.provider} does not support {operation}: {hint}",
            processor=self.provider,
            details={"operation": operation},
        )

    # Mapping helpers
    def _map_status(self, provider_status: Optional[str], default: PaymentStatus = PaymentStatus.FAILED) -> PaymentStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        value = mapping.get(provider_status or "")
        return PaymentStatus(value) if value else default

    def _map_mandate_status(self, provider_status: Optional[str]) -> str:
        mapping = PROVIDER_MANDATE_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status or "", "pending")

    def _map_event_type(self, vendor_type: Optional[str]) -> WebhookEventType:
        mapping = PROVIDER_EVENT_TO_INTERNAL.get(self.provider, {})
        return WebhookEventType.from_value(mapping.get(vendor_type or ""))

    def _next_charge_date(
        self,
        frequency: RecurringFrequency,
        vendor_period_end: Optional[datetime],
        start: Optional[datetime] = None,
    ) -> datetime:
        """Vendor billing-period end when available, local arithmetic otherwise."""
        if vendor_period_end is not None:
            return vendor_period_end
        return next_charge_date(frequency, start)

    @staticmethod
    def _to_major(amount: int, currency: Currency | str) -> str:
        exponent = MINOR_UNIT_EXPONENT[Currency(currency)]
        return f"{Decimal(amount).scaleb(-exponent):.{exponent}f}"

    @staticmethod
    def _to_minor(value: Any, currency: Currency | str) -> int:
        exponent = MINOR_UNIT_EXPONENT[Currency(currency)]
        return int((Decimal(str(value)) * (Decimal(10) ** exponent)).to_integral_value())

    @staticmethod
    def _from_timestamp(value: Any) -> Optional[datetime]:
        if value in (None, ""):
            return None
        return datetime.fromtimestamp(int(value), tz=timezone.utc)

    def _load_payload(self, payload: bytes | str | dict) -> Any:
        if isinstance(payload, dict):
            return payload
        try:
            return json.loads(payload)
        except (TypeError, ValueError, UnicodeDecodeError) as exc:
            raise payment_error(
                PaymentErrorCode.WEBHOOK_PROCESSING_FAILED,
                f"Malformed {self.provider} webhook payload",
                processor=self.provider,
                processor_message=str(exc),
            ) from exc

    def _require_fields(self, obj: Any, *fields: str) -> dict[str, Any]:
        if not isinstance(obj, dict) or any(obj.get(f) in (None, "") for f in fields):
            raise payment_error(
                PaymentErrorCode.WEBHOOK_PROCESSING_FAILED,
                f"{self.provider} webhook payload is missing {', '.join(fields)}",
                processor=self.provider,
            )
        return obj

    def parse_webhook_events(self, payload: bytes | str | dict) -> list[WebhookEvent]:
        return [self.parse_webhook_event(payload)]

    def get_hosted_fields_config(self, config: HostedFieldsConfig) -> HostedFieldsResult:
        raise self._not_supported("hosted fields", "no client-side integration configured")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
