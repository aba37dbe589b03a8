"""Pydantic schemas for sync results."""

from pydantic import BaseModel, ConfigDict


class SyncTallyResponse(BaseModel):
    """Per-link counts of one sync pass."""

    item_id: str
    added: int
    modified: int
    removed: int
    skipped: int
    status: str
    error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SyncReportResponse(BaseModel):
    ok: bool
    tallies: list[SyncTallyResponse]
