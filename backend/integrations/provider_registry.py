"""Registry of provider types and what each one is allowed to do.

The registry is responsible for:
- Knowing which provider types report a pending flag in transaction metadata
- Knowing which provider types allow holdings to be deleted
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static capabilities of one provider type."""

    provider_type: str
    reports_pending: bool = False  # extra[provider_type]["pending"] is meaningful
    can_delete_holdings: bool = False


# Each tuple is (provider_type, reports_pending, can_delete_holdings).
# Adding a new provider only requires appending one entry here.
PROVIDER_DEFINITIONS: list[tuple[str, bool, bool]] = [
    ("plaid", True, False),
    ("simplefin", True, False),
    ("lunchflow", True, False),
    ("enable_banking", True, False),
    ("snaptrade", False, False),
    ("coinbase", False, False),
    ("coinstats", False, False),
    ("indexa_capital", False, False),
    ("mercury", False, False),
]


class ProviderRegistry:
    """Lookup table for provider capabilities.

    Example:
        registry = ProviderRegistry()
        registry.register(ProviderCapabilities("plaid", reports_pending=True))
        registry.can_delete_holdings("plaid")  # False
    """

    def __init__(self):
        self._providers: dict[str, ProviderCapabilities] = {}

    def register(self, capabilities: ProviderCapabilities) -> None:
        self._providers[capabilities.provider_type.lower()] = capabilities

    def get(self, provider_type: str) -> ProviderCapabilities:
        """Get capabilities for a provider type.

        Unknown provider types get the most conservative capabilities
        (no pending flag, no holdings deletion).
        """
        key = (provider_type or "").lower()
        caps = self._providers.get(key)
        if caps is None:
            logger.debug("Unknown provider type %r; using default capabilities", provider_type)
            return ProviderCapabilities(provider_type=key)
        return caps

    def list_providers(self) -> list[str]:
        return list(self._providers.keys())

    def pending_provider_types(self) -> list[str]:
        """Provider types whose transaction metadata carries a pending flag."""
        return [name for name, caps in self._providers.items() if caps.reports_pending]

    def can_delete_holdings(self, provider_type: str) -> bool:
        return self.get(provider_type).can_delete_holdings

    def initialize_default_providers(self) -> None:
        for provider_type, reports_pending, can_delete in PROVIDER_DEFINITIONS:
            self.register(
                ProviderCapabilities(
                    provider_type=provider_type,
                    reports_pending=reports_pending,
                    can_delete_holdings=can_delete,
                )
            )


@lru_cache
def get_provider_registry() -> ProviderRegistry:
    """Get the process-wide registry populated with the default providers."""
    registry = ProviderRegistry()
    registry.initialize_default_providers()
    return registry
