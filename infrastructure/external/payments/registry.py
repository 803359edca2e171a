"""Payment gateway registry: name -> builder, with per-registry instance cache."""
from __future__ import annotations

import importlib
from typing import Callable, Optional

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.payment.entity import PaymentProcessor
from domain.payment.exceptions import PaymentAdapterError, payment_error
from shared.codes.payment_codes import PaymentErrorCode


logger = get_logger(__name__)

GatewayBuilder = Callable[[PaymentSettings], PaymentGateway]

_BUILTIN_BUILDERS = [
    (PaymentProcessor.STRIPE.value, "infrastructure.external.payments.stripe_client", "build_stripe_client"),
    (PaymentProcessor.ADYEN.value, "infrastructure.external.payments.adyen_client", "build_adyen_client"),
    (PaymentProcessor.PAYPAL.value, "infrastructure.external.payments.paypal_client", "build_paypal_client"),
    (PaymentProcessor.MOCK.value, "infrastructure.external.payments.mock_client", "build_mock_client"),
]

ALIASES: dict[str, str] = {
    "stripe": "stripe",
    "adyen": "adyen",
    "paypal": "paypal",
    "pay_pal": "paypal",
    "mock": "mock",
    "test": "mock",
}


class PaymentGatewayRegistry:
    """Resolves processor names to configured gateway instances.

    Instances are cached per registry; ``clear_cache`` drops them so tests and
    configuration reloads start fresh. No module-level singleton is kept.
    """

    def __init__(self, settings: Optional[PaymentSettings] = None) -> None:
        self.settings = settings or payment_settings
        self._builders: dict[str, GatewayBuilder] = {}
        self._instances: dict[str, PaymentGateway] = {}
        self._auto_register()

    def _auto_register(self) -> None:
        for name, module_path, builder_name in _BUILTIN_BUILDERS:
            if name in self._builders:
                continue
            try:
                module = importlib.import_module(module_path)
                self._builders[name] = getattr(module, builder_name)
            except (ImportError, AttributeError) as exc:
                logger.warning("payment_gateway_unavailable", provider=name, error=str(exc))

    def register(self, name: str, builder: GatewayBuilder) -> None:
        key = name.strip().lower()
        self._builders[key] = builder
        self._instances.pop(key, None)
        logger.info("payment_gateway_registered", provider=key)

    def resolve_name(self, name: Optional[str] = None) -> str:
        raw = (name or self.settings.default_provider or "").strip().lower()
        resolved = ALIASES.get(raw, raw)
        if resolved not in self._builders:
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                f"Unknown payment processor '{raw}'. Available: {sorted(self._builders)}",
                details={"requested": raw},
            )
        return resolved

    def is_configured(self, name: str) -> bool:
        try:
            resolved = self.resolve_name(name)
        except PaymentAdapterError:
            return False
        if resolved in self._instances:
            return True
        if resolved == PaymentProcessor.MOCK.value:
            return self.settings.mock.enabled
        vendor = getattr(self.settings, resolved, None)
        if vendor is None:
            # Custom builders decide for themselves at build time
            return True
        return bool(vendor.configured)

    def names(self) -> list[str]:
        return sorted(self._builders)

    def configured_processors(self) -> list[str]:
        return [name for name in self.names() if self.is_configured(name)]

    def get(self, name: Optional[str] = None) -> PaymentGateway:
        resolved = self.resolve_name(name)
        gateway = self._instances.get(resolved)
        if gateway is not None:
            return gateway
        if not self.is_configured(resolved):
            logger.error("payment_gateway_not_configured", provider=resolved)
            raise payment_error(
                PaymentErrorCode.CONFIGURATION_ERROR,
                f"Payment processor '{resolved}' is not configured",
                processor=resolved,
                details={"requested": resolved},
            )
        try:
            gateway = self._builders[resolved](self.settings)
        except PaymentAdapterError:
            logger.error("payment_gateway_build_failed", provider=resolved)
            raise
        self._instances[resolved] = gateway
        logger.info("payment_gateway_created", provider=resolved)
        return gateway

    def set_instance(self, name: str, gateway: PaymentGateway) -> None:
        """Pin a prebuilt gateway (tests inject doubles this way)."""
        key = ALIASES.get(name.strip().lower(), name.strip().lower())
        if key not in self._builders:
            self._builders[key] = lambda _settings: gateway
        self._instances[key] = gateway

    def clear_cache(self) -> None:
        self._instances.clear()

    async def aclose(self) -> None:
        instances = list(self._instances.values())
        self._instances.clear()
        for gateway in instances:
            await gateway.aclose()
