"""Pytest bootstrap configuration.

Shared fixtures build adapters from explicit settings objects so tests never
depend on the developer's environment or .env file.
"""
from datetime import datetime, timezone

import pytest

from application.services.retry_executor import RetryExecutor, RetryPolicy
from core.settings import AdyenSettings, PayPalSettings, StripeSettings
from infrastructure.external.payments.adyen_client import AdyenClient
from infrastructure.external.payments.mock_client import MockPaymentClient
from infrastructure.external.payments.paypal_client import PayPalClient
from infrastructure.external.payments.stripe_client import StripeClient
from infrastructure.repositories.webhook_event_store import InMemoryWebhookEventStore


FIXED_NOW = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_SECRET = "paypal_test_secret"
# Adyen HMAC keys are hex encoded
ADYEN_HMAC_KEY = "44782DEF547AAA06C910C43932B1EB0C71FC68D9D0C057550C48EC2ACF6BA056"


@pytest.fixture
def mock_gateway() -> MockPaymentClient:
    return MockPaymentClient(clock=lambda: FIXED_NOW)


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def executor(sleeps) -> RetryExecutor:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryExecutor(RetryPolicy(), sleep=fake_sleep)


@pytest.fixture
def event_store() -> InMemoryWebhookEventStore:
    return InMemoryWebhookEventStore()


@pytest.fixture
def stripe_client() -> StripeClient:
    return StripeClient(
        StripeSettings(
            api_key="sk_test_123",
            webhook_secret=STRIPE_WEBHOOK_SECRET,
            publishable_key="pk_test_123",
        )
    )


@pytest.fixture
def paypal_client() -> PayPalClient:
    return PayPalClient(
        PayPalSettings(
            api_key="client-id",
            client_secret="client-secret",
            webhook_secret=PAYPAL_WEBHOOK_SECRET,
            product_id="PROD-123",
        )
    )


@pytest.fixture
def adyen_client() -> AdyenClient:
    return AdyenClient(
        AdyenSettings(
            api_key="adyen-key",
            merchant_account="DonationsECOM",
            webhook_secret=ADYEN_HMAC_KEY,
            client_key="test_CLIENTKEY",
        )
    )
