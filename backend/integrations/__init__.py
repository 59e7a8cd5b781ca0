"""Provider-facing integration layer.

This package contains:
- Provider protocol: normalized records every provider is converted into
- Normalizers: provider payload quirks handled at the ingestion boundary
- Provider registry: per-provider capabilities (pending flags, holdings deletion)
"""

from integrations.provider_protocol import (
    HoldingSnapshot,
    ProviderHolding,
    ProviderSyncBatch,
    ProviderTrade,
    ProviderTransaction,
)
from integrations.provider_registry import ProviderRegistry, get_provider_registry

__all__ = [
    "HoldingSnapshot",
    "ProviderHolding",
    "ProviderSyncBatch",
    "ProviderTrade",
    "ProviderTransaction",
    "ProviderRegistry",
    "get_provider_registry",
]
