"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Examples: ``STRIPE__API_KEY``, ``PAYPAL__CLIENT_SECRET``, ``RETRY__MAX_ATTEMPTS``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 20.0
    write: float = 20.0
    total: float = 30.0


class PaymentRetry(BaseModel):
    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 4.0


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    dedupe_ttl_seconds: int = 7 * 24 * 3600
    redis_url: Optional[str] = None  # in-memory dedupe when unset
    namespace: str = "donation-payments"


class ProcessorSettings(BaseModel):
    api_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    test_mode: bool = True
    fee_percentage: Optional[Decimal] = None
    fee_fixed: Optional[Decimal] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class StripeSettings(ProcessorSettings):
    publishable_key: Optional[str] = None
    api_base: str = "https://api.stripe.com"


class AdyenSettings(ProcessorSettings):
    merchant_account: Optional[str] = None
    client_key: Optional[str] = None
    live_url_prefix: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.merchant_account)


class PayPalSettings(ProcessorSettings):
    # api_key holds the REST client id
    client_secret: Optional[str] = None
    webhook_id: Optional[str] = None
    product_id: Optional[str] = None
    brand_name: str = "Donations"
    return_url: str = "https://example.org/donate/return"
    cancel_url: str = "https://example.org/donate/cancel"

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.client_secret)


class MockSettings(BaseModel):
    enabled: bool = False
    webhook_secret: str = "mock_webhook_secret"
    delay_seconds: float = 0.0


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    adyen: AdyenSettings = Field(default_factory=AdyenSettings)
    paypal: PayPalSettings = Field(default_factory=PayPalSettings)
    mock: MockSettings = Field(default_factory=MockSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        populate_by_name=True,
    )


payment_settings = PaymentSettings()
