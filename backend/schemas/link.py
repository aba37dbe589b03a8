"""Pydantic schemas for link status."""

from pydantic import BaseModel, ConfigDict


class LinkStatusResponse(BaseModel):
    alias: str
    item_id: str
    institution_name: str | None = None
    status: str
    reason: str | None = None

    model_config = ConfigDict(from_attributes=True)
