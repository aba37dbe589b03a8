"""Provider protocol definitions for the upstream transaction feed.

This module defines the normalized data exchanged between the upstream
client, the transaction source and the ledger services: account
classification, canonical double-entry transactions and the change events
produced by a cursor pull.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Protocol, Union

from integrations.currency import Money

logger = logging.getLogger(__name__)


class AccountType(str, Enum):
    """Reduced two-valued account classification.

    Credit and loan instruments are credit-normal; depository, investment
    and brokerage instruments are debit-normal.
    """

    CREDIT_NORMAL = "CREDIT_NORMAL"
    DEBIT_NORMAL = "DEBIT_NORMAL"

    @classmethod
    def from_upstream(cls, upstream_type: str | None) -> "AccountType":
        """Classify a Plaid account type string."""
        value = str(upstream_type or "").lower()
        if value in ("credit", "loan"):
            return cls.CREDIT_NORMAL
        if value in ("depository", "investment", "brokerage"):
            return cls.DEBIT_NORMAL
        logger.warning(
            "Unknown upstream account type %r, treating as debit-normal", upstream_type
        )
        return cls.DEBIT_NORMAL

    @property
    def ledger_root(self) -> str:
        """Top-level ledger account the funding account renders under."""
        if self is AccountType.CREDIT_NORMAL:
            return "Liabilities"
        return "Assets"


class TransactionStatus(str, Enum):
    """Settlement state of a transaction (and of its postings)."""

    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class LinkStatus(str, Enum):
    """State of an upstream link; values are the stored ``link_state``."""

    ACTIVE = "ACTIVE"
    DEGRADED = "REQUIRES_VERIFICATION"


@dataclass
class Link:
    """An authorized upstream connection (one Plaid Item)."""

    item_id: str
    access_token: str
    alias: str = ""
    status: LinkStatus = LinkStatus.ACTIVE
    degraded_reason: str | None = None
    sync_cursor: str | None = None
    institution_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is LinkStatus.ACTIVE


@dataclass
class ProviderAccount:
    """Normalized account data from the provider."""

    id: str  # Upstream account id, referenced by funding postings
    name: str
    type: AccountType
    mask: str | None = None  # Last digits of the account number (if available)

    @property
    def ledger_name(self) -> str:
        """Name funding postings on this account render under."""
        return f"{self.type.ledger_root}:{self.name}"


@dataclass
class ProviderBalance:
    """Current balances of one upstream account."""

    account_id: str
    name: str
    type: AccountType
    available: Decimal | None = None
    current: Decimal | None = None
    currency: str | None = None


@dataclass
class ProviderInstitution:
    """An institution known to the provider."""

    id: str
    name: str


# Item error codes meaning the user must re-authorize the link.
LOGIN_REQUIRED_ERRORS = frozenset(
    {"ITEM_LOGIN_REQUIRED", "INVALID_ACCESS_TOKEN", "ACCESS_NOT_GRANTED"}
)


@dataclass
class ProviderItem:
    """Status of a link as reported by the provider."""

    item_id: str
    institution_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def requires_login(self) -> bool:
        """True when the stored credential can no longer be used as-is."""
        return self.error_code in LOGIN_REQUIRED_ERRORS


@dataclass(frozen=True)
class PostingEntry:
    """One leg of a canonical transaction."""

    account: str
    units: Money
    status: TransactionStatus


@dataclass(frozen=True)
class CanonicalTransaction:
    """Double-entry transaction built from an upstream record."""

    id: str
    status: TransactionStatus
    date: date
    narration: str
    postings: tuple[PostingEntry, ...]
    payee: str | None = None
    tags: tuple[str, ...] = ()
    links: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)

    def is_balanced(self) -> bool:
        """True when there are at least two postings summing to zero per currency."""
        if len(self.postings) < 2:
            return False
        totals: dict[str, Decimal] = {}
        for posting in self.postings:
            currency = posting.units.currency
            totals[currency] = totals.get(currency, Decimal("0")) + posting.units.amount
        return all(total == 0 for total in totals.values())


@dataclass(frozen=True)
class TransactionEntry:
    """A canonical transaction plus the raw upstream record it came from."""

    canonical: CanonicalTransaction
    source: dict

    @property
    def upstream_id(self) -> str:
        return self.source["transaction_id"]

    @property
    def pending_transaction_id(self) -> str | None:
        return self.source.get("pending_transaction_id") or None

    @property
    def is_pending(self) -> bool:
        return self.canonical.status is TransactionStatus.PENDING


class ChangeKind(str, Enum):
    """Classification of a change-feed event."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class AddedEvent:
    entry: TransactionEntry
    kind: ChangeKind = field(default=ChangeKind.ADDED, init=False)


@dataclass(frozen=True)
class ModifiedEvent:
    entry: TransactionEntry
    kind: ChangeKind = field(default=ChangeKind.MODIFIED, init=False)


@dataclass(frozen=True)
class RemovedEvent:
    upstream_id: str
    kind: ChangeKind = field(default=ChangeKind.REMOVED, init=False)


ChangeEvent = Union[AddedEvent, ModifiedEvent, RemovedEvent]


class UpstreamClient(Protocol):
    """Protocol for the upstream provider API.

    Implemented by :class:`~integrations.plaid_client.PlaidClient`; tests
    substitute in-memory fakes.
    """

    @property
    def provider_name(self) -> str:
        ...

    def list_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Return the accounts reachable through a link."""
        ...

    def get_balances(self, access_token: str) -> list[ProviderBalance]:
        """Return current balances of the link's accounts."""
        ...

    def get_item(self, access_token: str) -> ProviderItem:
        """Return the link's upstream status (error, institution)."""
        ...

    def sync_transactions(
        self, access_token: str, cursor: str | None, count: int
    ) -> dict:
        """Return one page of the transactions change feed.

        The page is a dict with ``added``, ``modified`` (lists of raw
        transaction dicts), ``removed`` (list of ``{"transaction_id": ...}``),
        ``next_cursor`` and ``has_more``.
        """
        ...

    def list_institutions(self, country_codes: list[str]) -> list[ProviderInstitution]:
        """Return the institutions available in the given countries."""
        ...

    def remove_item(self, access_token: str) -> None:
        """Revoke the access grant upstream."""
        ...
