"""Shared API dependencies for route handlers.

Each dependency is overridable in tests through ``app.dependency_overrides``.
"""

from database import get_session_local
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import UpstreamClient
from services.ledger_store import LedgerStore


def get_store() -> LedgerStore:
    """Return a LedgerStore bound to the configured database."""
    return LedgerStore(get_session_local())


def get_upstream_client() -> UpstreamClient:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient()
