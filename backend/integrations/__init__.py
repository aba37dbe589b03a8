"""External API integrations.

This package contains:
- Provider protocol: Normalized accounts, canonical transactions and change events
- Plaid client: Integration with the Plaid API
- Transaction source: Cursor-paginated change feed over /transactions/sync
"""

from integrations.provider_protocol import (
    CanonicalTransaction,
    ProviderAccount,
    UpstreamClient,
)

__all__ = [
    "CanonicalTransaction",
    "ProviderAccount",
    "UpstreamClient",
]
