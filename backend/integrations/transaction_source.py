"""Change-feed adapter over the upstream ``/transactions/sync`` endpoint.

Hides cursor pagination behind a single ``pull(cursor)`` call that returns
the ordered Added/Modified/Removed events together with the new cursor,
and builds canonical double-entry transactions from raw upstream records.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from config import settings
from integrations.currency import CurrencyTable
from integrations.exceptions import ProviderAPIError, ProviderDataError, SyncProtocolError
from integrations.parsing_utils import parse_iso_date
from integrations.provider_protocol import (
    AccountType,
    AddedEvent,
    CanonicalTransaction,
    ChangeEvent,
    ModifiedEvent,
    PostingEntry,
    ProviderAccount,
    RemovedEvent,
    TransactionEntry,
    TransactionStatus,
    UpstreamClient,
)
from models.utils import generate_ulid

logger = logging.getLogger(__name__)

# Plaid returns this when the feed changed while we were paging; the whole
# pull must restart from the cursor it started with.
MUTATION_DURING_PAGINATION = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"
MAX_PAGINATION_RESTARTS = 3


@dataclass(frozen=True)
class OffsetAccounts:
    """Ledger accounts used for the synthesized offsetting posting."""

    expense: str = "Expenses:Unclassified"
    income: str = "Income:Unclassified"
    payment: str = "Assets:Unclassified"

    @classmethod
    def from_settings(cls) -> "OffsetAccounts":
        return cls(
            expense=settings.DEFAULT_OFFSET_ACCOUNT,
            income=settings.DEFAULT_INCOME_ACCOUNT,
            payment=settings.DEFAULT_PAYMENT_ACCOUNT,
        )

    def for_flow(self, account_type: AccountType, amount: Decimal) -> str:
        """Pick the offset account for an upstream amount.

        Positive upstream amounts are outflows from the funding account.
        Inflows are income on debit-normal accounts and payments on
        credit-normal ones.
        """
        if amount >= 0:
            return self.expense
        if account_type is AccountType.CREDIT_NORMAL:
            return self.payment
        return self.income


def _category_tag(raw: dict) -> str | None:
    category = raw.get("personal_finance_category") or {}
    primary = category.get("primary") if isinstance(category, dict) else None
    if not primary:
        return None
    return str(primary).strip().lower().replace("_", "-")


def to_canonical_transaction(
    raw: dict,
    account_type: AccountType,
    currencies: CurrencyTable,
    offset_accounts: OffsetAccounts | None = None,
    txn_id: str | None = None,
) -> CanonicalTransaction:
    """Build a balanced canonical transaction from one raw upstream record.

    The funding posting carries the negated upstream amount against the
    upstream account id; the offset posting carries the amount itself.
    Deterministic for the same ``raw``, ``account_type`` and ``txn_id``.

    Raises:
        ProviderDataError: If the record lacks an id, account, date or amount.
    """
    offset_accounts = offset_accounts or OffsetAccounts()

    upstream_id = raw.get("transaction_id")
    if not upstream_id:
        raise ProviderDataError("Upstream transaction has no transaction_id")
    account_id = raw.get("account_id")
    if not account_id:
        raise ProviderDataError(f"Transaction {upstream_id} has no account_id")

    txn_date = parse_iso_date(raw.get("date")) or parse_iso_date(raw.get("authorized_date"))
    if txn_date is None:
        raise ProviderDataError(f"Transaction {upstream_id} has no parseable date")

    currency_code = raw.get("iso_currency_code") or raw.get("unofficial_currency_code")
    try:
        units = currencies.money(raw.get("amount"), currency_code)
    except ProviderDataError as e:
        raise ProviderDataError(f"Transaction {upstream_id}: {e}") from e

    status = TransactionStatus.PENDING if raw.get("pending") else TransactionStatus.RESOLVED
    offset_account = offset_accounts.for_flow(account_type, units.amount)

    metadata = {"upstream_id": upstream_id, "account_id": account_id}
    if raw.get("pending_transaction_id"):
        metadata["pending_transaction_id"] = raw["pending_transaction_id"]

    tag = _category_tag(raw)
    # A posted record links back to the pending record it supersedes.
    links = (raw["pending_transaction_id"],) if raw.get("pending_transaction_id") else ()

    return CanonicalTransaction(
        id=txn_id or generate_ulid(),
        status=status,
        date=txn_date,
        narration=raw.get("name") or raw.get("merchant_name") or "",
        payee=raw.get("merchant_name") or None,
        postings=(
            PostingEntry(account=account_id, units=-units, status=status),
            PostingEntry(account=offset_account, units=units, status=status),
        ),
        tags=(tag,) if tag else (),
        links=links,
        metadata=metadata,
    )


class TransactionSource:
    """Event stream for one link.

    Args:
        client: Upstream API client.
        access_token: The link's access credential.
        currencies: Currency table used to parse amounts.
        offset_accounts: Accounts for synthesized offset postings.
        page_size: Records requested per sync page.
        account_types: Known account id -> AccountType; extended by
            :meth:`accounts`.
        id_factory: Generates ledger ids for new canonical transactions.
    """

    def __init__(
        self,
        client: UpstreamClient,
        access_token: str,
        currencies: CurrencyTable,
        offset_accounts: OffsetAccounts | None = None,
        page_size: int = 500,
        account_types: dict[str, AccountType] | None = None,
        id_factory: Callable[[], str] = generate_ulid,
        max_restarts: int = MAX_PAGINATION_RESTARTS,
    ):
        self._client = client
        self._access_token = access_token
        self._currencies = currencies
        self._offset_accounts = offset_accounts or OffsetAccounts()
        self._page_size = page_size
        self._account_types: dict[str, AccountType] = dict(account_types or {})
        self._id_factory = id_factory
        self._max_restarts = max_restarts

    def accounts(self) -> list[ProviderAccount]:
        """List the link's upstream accounts and remember their types."""
        accounts = self._client.list_accounts(self._access_token)
        for account in accounts:
            self._account_types[account.id] = account.type
        return accounts

    def pull(self, cursor: str | None = None) -> tuple[list[ChangeEvent], str]:
        """Fetch every change since ``cursor``.

        Returns:
            Tuple of (ordered events, next cursor).

        Raises:
            SyncProtocolError: The page sequence ended without a terminal
                cursor page.
            ProviderError: Upstream failures (after client-level retries).
        """
        attempt = 0
        while True:
            try:
                added, modified, removed, next_cursor = self._collect_pages(cursor)
                break
            except ProviderAPIError as e:
                if e.error_code != MUTATION_DURING_PAGINATION or attempt >= self._max_restarts:
                    raise
                attempt += 1
                logger.info(
                    "Transactions changed during pagination, restarting pull (%d/%d)",
                    attempt, self._max_restarts,
                )

        events: list[ChangeEvent] = []
        for raw in added:
            events.append(AddedEvent(self._entry(raw)))
        for raw in modified:
            events.append(ModifiedEvent(self._entry(raw)))
        for raw in removed:
            upstream_id = raw.get("transaction_id") if isinstance(raw, dict) else None
            if not upstream_id:
                raise ProviderDataError("Removed event without transaction_id")
            events.append(RemovedEvent(upstream_id))

        logger.debug(
            "Pulled %d added, %d modified, %d removed",
            len(added), len(modified), len(removed),
        )
        return events, next_cursor

    def _collect_pages(self, cursor: str | None):
        added: list[dict] = []
        modified: list[dict] = []
        removed: list[dict] = []
        page_cursor = cursor

        while True:
            page = self._client.sync_transactions(
                self._access_token, page_cursor, self._page_size
            )
            if not page or page.get("has_more") is None:
                raise SyncProtocolError(
                    "Transaction feed ended without a terminal cursor page",
                    self._client.provider_name,
                )

            added.extend(page.get("added") or [])
            modified.extend(page.get("modified") or [])
            removed.extend(page.get("removed") or [])
            next_cursor = page.get("next_cursor")

            if not page["has_more"]:
                if not next_cursor:
                    raise SyncProtocolError(
                        "Terminal page carried no cursor", self._client.provider_name
                    )
                return added, modified, removed, next_cursor

            if not next_cursor or next_cursor == page_cursor:
                raise SyncProtocolError(
                    "Transaction feed made no cursor progress", self._client.provider_name
                )
            page_cursor = next_cursor

    def _entry(self, raw: dict) -> TransactionEntry:
        account_id = raw.get("account_id")
        account_type = self._account_types.get(account_id)
        if account_type is None:
            logger.warning(
                "Transaction %s references unknown account %s, treating as debit-normal",
                raw.get("transaction_id"), account_id,
            )
            account_type = AccountType.DEBIT_NORMAL
        canonical = to_canonical_transaction(
            raw,
            account_type,
            self._currencies,
            self._offset_accounts,
            txn_id=self._id_factory(),
        )
        return TransactionEntry(canonical=canonical, source=raw)
