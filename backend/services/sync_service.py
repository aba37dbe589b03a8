"""Sync service - pulls upstream change feeds into the local ledger."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config import settings
from integrations.currency import CurrencyTable
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.provider_protocol import (
    AddedEvent,
    ChangeEvent,
    ChangeKind,
    Link,
    ModifiedEvent,
    RemovedEvent,
    UpstreamClient,
)
from integrations.transaction_source import OffsetAccounts, TransactionSource
from services.errors import (
    ConsistencyError,
    LedgerError,
    StoreError,
    StoreErrorKind,
    SyncInProgressError,
)
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    DEGRADED = "degraded"
    SKIPPED = "skipped"


@dataclass
class SyncTally:
    """Per-link result of one sync pass."""

    item_id: str
    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0
    status: SyncOutcome = SyncOutcome.SUCCESS
    error: str | None = None


@dataclass
class SyncReport:
    tallies: list[SyncTally] = field(default_factory=list)

    @property
    def failed(self) -> list[SyncTally]:
        return [t for t in self.tallies if t.status is SyncOutcome.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed


class SyncService:
    """Applies each active link's change feed to the ledger store.

    Each link is processed by at most one task at a time; independent links
    may run concurrently on a thread pool of ``max_workers``.
    """

    # Class-level locks shared across all instances: one for the whole pass,
    # one per link for the cursor it owns.
    _sync_lock = threading.Lock()
    _link_locks: dict[str, threading.Lock] = {}
    _link_locks_guard = threading.Lock()

    def __init__(
        self,
        store: LedgerStore,
        client: Optional[UpstreamClient] = None,
        currencies: Optional[CurrencyTable] = None,
        offset_accounts: Optional[OffsetAccounts] = None,
        page_size: Optional[int] = None,
        include_pending: Optional[bool] = None,
        max_workers: Optional[int] = None,
    ):
        self._store = store
        self._client = client
        self._currencies = currencies or CurrencyTable.iso(settings.DEFAULT_CURRENCY)
        self._offset_accounts = offset_accounts or OffsetAccounts.from_settings()
        self._page_size = page_size or settings.SYNC_PAGE_SIZE
        self._include_pending = (
            settings.SYNC_INCLUDE_PENDING if include_pending is None else include_pending
        )
        self._max_workers = max(1, max_workers or settings.SYNC_MAX_WORKERS)

    @property
    def client(self) -> UpstreamClient:
        """Get the upstream client, creating the Plaid client if not provided."""
        if self._client is None:
            from integrations.plaid_client import PlaidClient

            self._client = PlaidClient()
        return self._client

    @classmethod
    def is_sync_in_progress(cls) -> bool:
        acquired = cls._sync_lock.acquire(blocking=False)
        if acquired:
            cls._sync_lock.release()
            return False
        return True

    @classmethod
    def _lock_for(cls, item_id: str) -> threading.Lock:
        with cls._link_locks_guard:
            return cls._link_locks.setdefault(item_id, threading.Lock())

    def sync_all(self) -> SyncReport:
        """Run one sync pass over every stored link.

        Raises:
            SyncInProgressError: Another pass is already running.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("Sync already in progress")
        try:
            links = self._store.list_links()
            if self._max_workers == 1 or len(links) <= 1:
                tallies = [self.sync_link(link) for link in links]
            else:
                with ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="sync"
                ) as pool:
                    tallies = list(pool.map(self.sync_link, links))
        finally:
            self._sync_lock.release()

        report = SyncReport(tallies=tallies)
        logger.info(
            "Sync pass complete: %d links, %d failed", len(tallies), len(report.failed)
        )
        return report

    def sync_link(self, link: Link) -> SyncTally:
        """Sync one link; failures are reported on the tally, not raised."""
        tally = SyncTally(item_id=link.item_id)
        if not link.is_active:
            logger.info(
                "Skipping degraded link %s (%s): %s",
                link.item_id, link.alias, link.degraded_reason,
            )
            tally.status = SyncOutcome.SKIPPED
            return tally

        with self._lock_for(link.item_id):
            try:
                self._sync_locked(link.item_id, tally)
            except ProviderAuthError as e:
                self._store.mark_degraded(link.item_id, str(e))
                tally.status = SyncOutcome.DEGRADED
                tally.error = str(e)
            except (ConsistencyError, LedgerError, ProviderError, StoreError) as e:
                logger.error("Sync failed for link %s: %s", link.item_id, e)
                tally.status = SyncOutcome.FAILED
                tally.error = str(e)

        logger.info(
            "Synced link %s: status=%s added=%d modified=%d removed=%d skipped=%d",
            tally.item_id, tally.status.value,
            tally.added, tally.modified, tally.removed, tally.skipped,
        )
        return tally

    def _sync_locked(self, item_id: str, tally: SyncTally) -> None:
        # Re-read under the lock so the cursor is the latest persisted one.
        link = self._store.get_link(item_id)
        if link is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"Link {item_id} not found")
        if not link.is_active:
            tally.status = SyncOutcome.SKIPPED
            return

        source = TransactionSource(
            self.client,
            link.access_token,
            self._currencies,
            offset_accounts=self._offset_accounts,
            page_size=self._page_size,
            account_types={a.id: a.type for a in self._store.accounts_by_item(item_id)},
        )
        for account in source.accounts():
            self._store.save_account(item_id, account)

        events, next_cursor = source.pull(link.sync_cursor)
        for event in events:
            self.apply_event(item_id, event, tally)

        if next_cursor != link.sync_cursor:
            self._store.update_cursor(item_id, next_cursor)
            logger.debug("Advanced cursor for link %s", item_id)

    def apply_event(self, item_id: str, event: ChangeEvent, tally: SyncTally) -> None:
        """Apply one change event to the store and count it on ``tally``."""
        if event.kind is ChangeKind.ADDED:
            self._apply_added(item_id, event, tally)
        elif event.kind is ChangeKind.MODIFIED:
            self._apply_modified(item_id, event, tally)
        elif event.kind is ChangeKind.REMOVED:
            self._apply_removed(item_id, event, tally)
        else:
            raise ConsistencyError(f"Unknown change event {event!r}")

    def _apply_added(self, item_id: str, event: AddedEvent, tally: SyncTally) -> None:
        entry = event.entry
        if entry.is_pending and not self._include_pending:
            tally.skipped += 1
            return

        # A posted transaction names the pending one it supersedes.
        pending_id = entry.pending_transaction_id
        if pending_id and self._store.transaction_by_upstream_id(item_id, pending_id):
            try:
                txn_id = self._store.replace_pending(item_id, pending_id, entry)
            except StoreError as e:
                if e.kind is not StoreErrorKind.DUPLICATE:
                    raise
                tally.skipped += 1
                return
            logger.debug(
                "Pending %s posted as %s (ledger %s)", pending_id, entry.upstream_id, txn_id
            )
            tally.modified += 1
            return

        try:
            self._store.save_transaction(item_id, entry)
        except StoreError as e:
            if e.kind is not StoreErrorKind.DUPLICATE:
                raise
            logger.debug("Skipping already stored transaction %s", entry.upstream_id)
            tally.skipped += 1
            return
        tally.added += 1

    def _apply_modified(self, item_id: str, event: ModifiedEvent, tally: SyncTally) -> None:
        upstream_id = event.entry.upstream_id
        txn_id = self._store.transaction_by_upstream_id(item_id, upstream_id)
        if txn_id is None and event.entry.is_pending and not self._include_pending:
            # Its Added event was skipped for the same reason.
            tally.skipped += 1
            return
        if txn_id is None:
            raise ConsistencyError(
                f"Modified transaction {upstream_id} has no stored base for link {item_id}"
            )
        self._store.update_source(txn_id, event.entry)
        tally.modified += 1

    def _apply_removed(self, item_id: str, event: RemovedEvent, tally: SyncTally) -> None:
        txn_id = self._store.transaction_by_upstream_id(item_id, event.upstream_id)
        if txn_id is None:
            logger.info(
                "Removed transaction %s is not stored for link %s, nothing to delete",
                event.upstream_id, item_id,
            )
            return
        self._store.delete_transaction(txn_id)
        tally.removed += 1
