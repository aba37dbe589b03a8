"""Account model - an upstream account owned by a link."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from database import Base


class Account(Base):
    """An upstream financial account (checking, credit card, ...).

    ``id`` is the upstream account id, which is also what funding postings
    reference. ``type`` is the reduced classification ``CREDIT_NORMAL`` or
    ``DEBIT_NORMAL``. Rows outlive their link while postings still point at
    them, so ``item_id`` is nulled rather than cascaded on link removal.
    """

    __tablename__ = "accounts"

    id = Column(String, primary_key=True)
    item_id = Column(
        String, ForeignKey("links.item_id", ondelete="SET NULL"), nullable=True, index=True
    )
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    mask = Column(String, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    link = relationship("PlaidLink", back_populates="accounts")
