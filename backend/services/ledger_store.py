"""SQL-backed local store for links, accounts, institutions and the ledger.

Every public operation runs in its own session and database transaction,
so a transaction row, its postings, tags and upstream mapping are written
atomically and callers on different threads never share a session.
"""

import json
import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from integrations.currency import Money
from integrations.provider_protocol import (
    AccountType,
    CanonicalTransaction,
    Link,
    LinkStatus,
    PostingEntry,
    ProviderAccount,
    ProviderInstitution,
    TransactionEntry,
    TransactionStatus,
)
from models import (
    Account,
    Institution,
    LedgerTransaction,
    PlaidLink,
    Posting,
    Tag,
    UpstreamTransactionMap,
)
from services.errors import LedgerError, StoreError, StoreErrorKind

logger = logging.getLogger(__name__)


def _link_from_row(row: PlaidLink) -> Link:
    return Link(
        item_id=row.item_id,
        access_token=row.access_token,
        alias=row.alias or "",
        status=LinkStatus(row.link_state),
        degraded_reason=row.degraded_reason,
        sync_cursor=row.sync_cursor,
        institution_id=row.institution_id,
    )


def _account_from_row(row: Account) -> ProviderAccount:
    return ProviderAccount(
        id=row.id, name=row.name, type=AccountType(row.type), mask=row.mask
    )


def _transaction_from_row(row: LedgerTransaction) -> CanonicalTransaction:
    postings = tuple(
        PostingEntry(
            account=p.account,
            units=Money(Decimal(p.amount), p.currency),
            status=TransactionStatus(p.status),
        )
        for p in row.postings
    )
    payload = json.loads(row.source_payload) if row.source_payload else {}
    pending_id = payload.get("pending_transaction_id")
    metadata = {}
    if row.upstream_ids:
        mapping = row.upstream_ids[0]
        metadata["upstream_id"] = mapping.upstream_id
        metadata["item_id"] = mapping.item_id
    return CanonicalTransaction(
        id=row.id,
        status=TransactionStatus(row.status),
        date=row.date,
        narration=row.narration,
        payee=row.payee,
        postings=postings,
        tags=tuple(t.value for t in row.tags),
        links=(pending_id,) if pending_id else (),
        metadata=metadata,
    )


def _require_balanced(canonical: CanonicalTransaction) -> None:
    if not canonical.is_balanced():
        raise LedgerError(
            f"Transaction {canonical.id} is unbalanced: postings must number at "
            f"least two and sum to zero per currency"
        )


def _apply_entry(row: LedgerTransaction, entry: TransactionEntry) -> None:
    """Copy an entry's source payload and derived columns onto a row.

    Postings and tags are replaced wholesale; the row id is untouched.
    """
    canonical = entry.canonical
    row.date = canonical.date
    row.payee = canonical.payee
    row.narration = canonical.narration
    row.status = canonical.status.value
    row.source_payload = json.dumps(entry.source, default=str, sort_keys=True)
    row.postings = [
        Posting(
            position=position,
            account=posting.account,
            amount=posting.units.amount,
            currency=posting.units.currency,
            status=posting.status.value,
        )
        for position, posting in enumerate(canonical.postings)
    ]
    row.tags = [Tag(value=tag) for tag in canonical.tags]


class LedgerStore:
    """Persistence gateway used by the sync driver and the link/ledger services.

    Args:
        session_factory: Callable returning a new SQLAlchemy Session
            (normally a ``sessionmaker``).
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self):
        try:
            with self._session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            raise StoreError(StoreErrorKind.DATABASE, str(e)) from e

    @staticmethod
    def _mapping(
        session: Session, item_id: str, upstream_id: str
    ) -> UpstreamTransactionMap | None:
        return (
            session.query(UpstreamTransactionMap)
            .filter(
                UpstreamTransactionMap.item_id == item_id,
                UpstreamTransactionMap.upstream_id == upstream_id,
            )
            .first()
        )

    @staticmethod
    def _require_link(session: Session, item_id: str) -> PlaidLink:
        row = session.get(PlaidLink, item_id)
        if row is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"Link {item_id} not found")
        return row

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def save_transaction(self, item_id: str, entry: TransactionEntry) -> str:
        """Insert a transaction, its postings, tags and upstream mapping.

        Returns:
            The ledger id of the new transaction.

        Raises:
            LedgerError: If the postings do not balance.
            StoreError: ``DUPLICATE`` if ``(item_id, upstream_id)`` is already
                mapped, ``NOT_FOUND`` for an unknown link.
        """
        canonical = entry.canonical
        _require_balanced(canonical)
        upstream_id = entry.upstream_id

        try:
            with self._transaction() as session:
                self._require_link(session, item_id)
                if self._mapping(session, item_id, upstream_id) is not None:
                    raise StoreError(
                        StoreErrorKind.DUPLICATE,
                        f"Upstream transaction {upstream_id} already stored for {item_id}",
                    )
                row = LedgerTransaction(id=canonical.id)
                _apply_entry(row, entry)
                row.upstream_ids = [
                    UpstreamTransactionMap(item_id=item_id, upstream_id=upstream_id)
                ]
                session.add(row)
        except StoreError as e:
            # A concurrent writer may have inserted the same upstream id
            # between the check and the commit.
            if e.kind is StoreErrorKind.DATABASE and self.transaction_by_upstream_id(
                item_id, upstream_id
            ):
                raise StoreError(
                    StoreErrorKind.DUPLICATE,
                    f"Upstream transaction {upstream_id} already stored for {item_id}",
                ) from e
            raise

        logger.debug("Stored transaction %s (upstream %s)", canonical.id, upstream_id)
        return canonical.id

    def transaction_by_upstream_id(self, item_id: str, upstream_id: str) -> str | None:
        """Return the ledger id mapped to an upstream id, if any."""
        with self._transaction() as session:
            mapping = self._mapping(session, item_id, upstream_id)
            return mapping.txn_id if mapping else None

    def update_source(self, txn_id: str, entry: TransactionEntry) -> None:
        """Overwrite a transaction's source payload and the columns derived from it.

        The ledger id and the upstream mapping are left as they are.
        """
        _require_balanced(entry.canonical)
        with self._transaction() as session:
            row = session.get(LedgerTransaction, txn_id)
            if row is None:
                raise StoreError(StoreErrorKind.NOT_FOUND, f"Transaction {txn_id} not found")
            _apply_entry(row, entry)

    def replace_pending(
        self, item_id: str, pending_upstream_id: str, entry: TransactionEntry
    ) -> str:
        """Replace a pending transaction with its posted version in place.

        The ledger row keeps its id; the mapping is re-keyed from the
        pending upstream id to the posted one.

        Returns:
            The (unchanged) ledger id.
        """
        _require_balanced(entry.canonical)
        with self._transaction() as session:
            mapping = self._mapping(session, item_id, pending_upstream_id)
            if mapping is None:
                raise StoreError(
                    StoreErrorKind.NOT_FOUND,
                    f"Pending transaction {pending_upstream_id} not stored for {item_id}",
                )
            if self._mapping(session, item_id, entry.upstream_id) is not None:
                raise StoreError(
                    StoreErrorKind.DUPLICATE,
                    f"Upstream transaction {entry.upstream_id} already stored for {item_id}",
                )
            _apply_entry(mapping.transaction, entry)
            mapping.upstream_id = entry.upstream_id
            txn_id = mapping.txn_id

        logger.debug(
            "Replaced pending %s with %s on ledger transaction %s",
            pending_upstream_id, entry.upstream_id, txn_id,
        )
        return txn_id

    def delete_transaction(self, txn_id: str) -> None:
        """Delete a transaction; postings, tags and mappings cascade."""
        with self._transaction() as session:
            row = session.get(LedgerTransaction, txn_id)
            if row is None:
                raise StoreError(StoreErrorKind.NOT_FOUND, f"Transaction {txn_id} not found")
            session.delete(row)

    def transactions(
        self, begin: date | None = None, until: date | None = None
    ) -> list[CanonicalTransaction]:
        """Load transactions dated within [begin, until], oldest first."""
        with self._transaction() as session:
            query = session.query(LedgerTransaction).options(
                selectinload(LedgerTransaction.postings),
                selectinload(LedgerTransaction.tags),
                selectinload(LedgerTransaction.upstream_ids),
            )
            if begin is not None:
                query = query.filter(LedgerTransaction.date >= begin)
            if until is not None:
                query = query.filter(LedgerTransaction.date <= until)
            rows = query.order_by(LedgerTransaction.date, LedgerTransaction.id).all()
            return [_transaction_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def list_links(self) -> list[Link]:
        with self._transaction() as session:
            rows = session.query(PlaidLink).order_by(PlaidLink.created_at, PlaidLink.item_id).all()
            return [_link_from_row(row) for row in rows]

    def get_link(self, item_id: str) -> Link | None:
        with self._transaction() as session:
            row = session.get(PlaidLink, item_id)
            return _link_from_row(row) if row else None

    def save_link(self, link: Link) -> None:
        """Insert a new link. Raises ``StoreError(DUPLICATE)`` if it exists."""
        with self._transaction() as session:
            if session.get(PlaidLink, link.item_id) is not None:
                raise StoreError(StoreErrorKind.DUPLICATE, f"Link {link.item_id} already exists")
            session.add(PlaidLink(
                item_id=link.item_id,
                alias=link.alias,
                access_token=link.access_token,
                link_state=link.status.value,
                degraded_reason=link.degraded_reason,
                sync_cursor=link.sync_cursor,
                institution_id=link.institution_id,
            ))
        logger.info("Saved link %s (%s)", link.item_id, link.alias or "no alias")

    def update_link(self, link: Link) -> None:
        """Overwrite every mutable field of an existing link."""
        with self._transaction() as session:
            row = self._require_link(session, link.item_id)
            row.alias = link.alias
            row.access_token = link.access_token
            row.link_state = link.status.value
            row.degraded_reason = link.degraded_reason
            row.sync_cursor = link.sync_cursor
            row.institution_id = link.institution_id

    def update_cursor(self, item_id: str, cursor: str) -> None:
        with self._transaction() as session:
            self._require_link(session, item_id).sync_cursor = cursor

    def mark_degraded(self, item_id: str, reason: str) -> None:
        """Persist the Active -> Degraded transition immediately."""
        with self._transaction() as session:
            row = self._require_link(session, item_id)
            row.link_state = LinkStatus.DEGRADED.value
            row.degraded_reason = reason
        logger.warning("Link %s marked degraded: %s", item_id, reason)

    def delete_link(self, item_id: str) -> None:
        """Delete a link and its upstream mappings.

        Accounts still referenced by postings survive (detached from the
        link); unreferenced accounts are removed. Ledger transactions stay.
        """
        with self._transaction() as session:
            row = self._require_link(session, item_id)
            referenced = select(Posting.account).distinct()
            removed_accounts = (
                session.query(Account)
                .filter(Account.item_id == item_id, Account.id.not_in(referenced))
                .delete(synchronize_session=False)
            )
            session.delete(row)
        logger.info("Deleted link %s (%d unreferenced accounts removed)", item_id, removed_accounts)

    # ------------------------------------------------------------------
    # Accounts & institutions
    # ------------------------------------------------------------------

    def save_account(self, item_id: str, account: ProviderAccount) -> None:
        """Insert or refresh an upstream account."""
        with self._transaction() as session:
            self._require_link(session, item_id)
            row = session.get(Account, account.id)
            if row is None:
                session.add(Account(
                    id=account.id,
                    item_id=item_id,
                    name=account.name,
                    type=account.type.value,
                    mask=account.mask,
                ))
            else:
                row.item_id = item_id
                row.name = account.name
                row.type = account.type.value
                row.mask = account.mask

    def accounts_by_item(self, item_id: str) -> list[ProviderAccount]:
        with self._transaction() as session:
            rows = (
                session.query(Account)
                .filter(Account.item_id == item_id)
                .order_by(Account.name)
                .all()
            )
            return [_account_from_row(row) for row in rows]

    def account_by_id(self, account_id: str) -> ProviderAccount | None:
        with self._transaction() as session:
            row = session.get(Account, account_id)
            return _account_from_row(row) if row else None

    def save_institution(self, institution: ProviderInstitution) -> None:
        with self._transaction() as session:
            row = session.get(Institution, institution.id)
            if row is None:
                session.add(Institution(id=institution.id, name=institution.name))
            else:
                row.name = institution.name

    def list_institutions(self) -> list[ProviderInstitution]:
        with self._transaction() as session:
            rows = session.query(Institution).order_by(Institution.name).all()
            return [ProviderInstitution(id=row.id, name=row.name) for row in rows]
