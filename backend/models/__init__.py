"""SQLAlchemy ORM models."""

from .account import Account
from .institution import Institution
from .link import PlaidLink
from .transaction import LedgerTransaction, Posting, Tag, UpstreamTransactionMap
from .utils import generate_ulid

__all__ = ["Account", "Institution", "LedgerTransaction", "PlaidLink", "Posting", "Tag", "UpstreamTransactionMap", "generate_ulid"]
