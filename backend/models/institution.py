"""Institution model - cache of upstream institution names."""

from sqlalchemy import Column, String

from database import Base


class Institution(Base):
    """A financial institution known to the upstream provider."""

    __tablename__ = "institutions"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
