"""API route handlers."""
from . import ledger, links, sync

__all__ = ["ledger", "links", "sync"]
