"""Ledger transaction models - transactions, postings, tags and upstream id mapping."""

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_ulid


class LedgerTransaction(Base):
    """A double-entry transaction in the local ledger.

    ``id`` is a ULID generated at ingestion and kept for the life of the
    record, including across the pending -> posted transition upstream.
    ``source_payload`` is the JSON of the upstream record it was built from.
    """

    __tablename__ = "transactions"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    date = Column(Date, nullable=False, index=True)
    payee = Column(String, nullable=True)
    narration = Column(String, nullable=False)
    status = Column(String, nullable=False)  # "PENDING" | "RESOLVED"
    source_payload = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    postings = relationship(
        "Posting",
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Posting.position",
    )
    tags = relationship(
        "Tag",
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    upstream_ids = relationship(
        "UpstreamTransactionMap",
        back_populates="transaction",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Posting(Base):
    """One leg of a ledger transaction."""

    __tablename__ = "postings"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    txn_id = Column(
        String(26), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    account = Column(String, nullable=False)
    amount = Column(Numeric(18, 4), nullable=False)
    currency = Column(String(8), nullable=False)
    status = Column(String, nullable=False)

    # Relationships
    transaction = relationship("LedgerTransaction", back_populates="postings")


class Tag(Base):
    """A tag attached to a ledger transaction."""

    __tablename__ = "tags"

    id = Column(String(26), primary_key=True, default=generate_ulid)
    txn_id = Column(
        String(26), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    value = Column(String, nullable=False)

    # Relationships
    transaction = relationship("LedgerTransaction", back_populates="tags")


class UpstreamTransactionMap(Base):
    """Maps an upstream transaction id (per link) to a ledger transaction id.

    Deduplication relies on the composite unique constraint
    (item_id, upstream_id).
    """

    __tablename__ = "upstream_transaction_map"
    __table_args__ = (
        UniqueConstraint("item_id", "upstream_id", name="uix_upstream_item_txn"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(
        String, ForeignKey("links.item_id", ondelete="CASCADE"), nullable=False
    )
    upstream_id = Column(String, nullable=False)
    txn_id = Column(
        String(26), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Relationships
    transaction = relationship("LedgerTransaction", back_populates="upstream_ids")
