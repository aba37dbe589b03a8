"""PlaidLink model - stores one authorized upstream connection (Plaid Item)."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from database import Base


class PlaidLink(Base):
    """A Plaid Item linked through the external authorization flow.

    Holds the access token used for every upstream call and the
    transactions sync cursor marking how far the change feed has been
    consumed. ``link_state`` is ``ACTIVE`` or ``REQUIRES_VERIFICATION``
    (degraded; the upstream rejected the credential).
    """

    __tablename__ = "links"
    __table_args__ = (
        CheckConstraint(
            "link_state IN ('ACTIVE', 'REQUIRES_VERIFICATION')",
            name="ck_links_link_state",
        ),
    )

    item_id = Column(String, primary_key=True)
    alias = Column(String, nullable=False, default="")
    access_token = Column(String, nullable=False)
    link_state = Column(String, nullable=False, default="ACTIVE")
    degraded_reason = Column(Text, nullable=True)
    sync_cursor = Column(Text, nullable=True)
    institution_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    accounts = relationship("Account", back_populates="link", passive_deletes=True)
