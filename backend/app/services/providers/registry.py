"""
Provider registry.

Maps provider identifiers to gateway instances. Adding a vendor means
registering another ``ProviderGateway`` implementation here.
"""

from typing import Dict, List, Union

from backend.app.core.config import settings
from backend.app.core.exceptions import ProviderError, ProviderUnavailable, UnsupportedProviderError
from backend.app.core.reliability import CircuitBreaker
from backend.app.models.order_enums import ProviderName
from backend.app.services.providers.base import ProviderGateway
from backend.app.services.providers.fivesim import FiveSimGateway


class ProviderRegistry:

    def __init__(self):
        self._gateways: Dict[str, ProviderGateway] = {}

    def register(self, gateway: ProviderGateway) -> None:
        self._gateways[gateway.name] = gateway

    def get(self, provider: Union[str, ProviderName]) -> ProviderGateway:
        """
        Resolve a gateway by identifier.

        Raises:
            UnsupportedProviderError: unknown vendor, or a known vendor with
                no integrated gateway (sms-activate, smshub)
        """
        key = provider.value if isinstance(provider, ProviderName) else str(provider)
        gateway = self._gateways.get(key)
        if gateway is None:
            raise UnsupportedProviderError(key)
        return gateway

    def is_integrated(self, provider: Union[str, ProviderName]) -> bool:
        key = provider.value if isinstance(provider, ProviderName) else str(provider)
        return key in self._gateways

    def describe(self) -> List[dict]:
        """Known vendors with integration and credential status."""
        configured = {
            ProviderName.FIVESIM: (settings.fivesim_base_url, settings.fivesim_api_key),
            ProviderName.SMS_ACTIVATE: (settings.sms_activate_base_url, settings.sms_activate_api_key),
            ProviderName.SMSHUB: (settings.smshub_base_url, settings.smshub_api_key),
        }
        return [
            {
                "id": name.value,
                "base_url": base_url,
                "has_api_key": bool(api_key),
                "integrated": self.is_integrated(name),
            }
            for name, (base_url, api_key) in configured.items()
        ]

    async def aclose(self) -> None:
        for gateway in self._gateways.values():
            await gateway.aclose()


def build_default_registry(transport=None) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(
        FiveSimGateway(
            base_url=settings.fivesim_base_url,
            api_key=settings.fivesim_api_key,
            timeout=settings.provider_timeout_seconds,
            transport=transport,
            currency=settings.fivesim_currency,
            breaker=CircuitBreaker(
                name=ProviderName.FIVESIM.value,
                failure_threshold=settings.provider_failure_threshold,
                reset_timeout=settings.provider_reset_timeout,
                trip_on=(ProviderUnavailable, ProviderError),
            ),
        )
    )
    return registry


provider_registry = build_default_registry()


def get_provider_registry() -> ProviderRegistry:
    """FastAPI dependency returning the process-wide registry."""
    return provider_registry
