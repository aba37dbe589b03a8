"""Sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.helpers import get_store, get_upstream_client
from integrations.provider_protocol import UpstreamClient
from schemas.sync import SyncReportResponse, SyncTallyResponse
from services.errors import StoreError, SyncInProgressError
from services.ledger_store import LedgerStore
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_sync_service(
    store: LedgerStore = Depends(get_store),
    client: UpstreamClient = Depends(get_upstream_client),
) -> SyncService:
    """Get SyncService instance, allowing for test overrides."""
    return SyncService(store, client)


@router.post("", response_model=SyncReportResponse)
def trigger_sync(sync_service: SyncService = Depends(get_sync_service)):
    """Run one sync pass over every link.

    Always returns 200 with per-link tallies; link failures are reported on
    the tally's ``status`` and ``error``.

    Raises:
        HTTPException:
            - 409 Conflict: Sync is already in progress
            - 500 Internal Server Error: The local store failed
    """
    if sync_service.is_sync_in_progress():
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )

    try:
        report = sync_service.sync_all()
    except SyncInProgressError:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )
    except StoreError:
        logger.error("Store error during sync", exc_info=True)
        raise HTTPException(status_code=500, detail="A database error occurred during sync.")

    return SyncReportResponse(
        ok=report.ok,
        tallies=[
            SyncTallyResponse(
                item_id=t.item_id,
                added=t.added,
                modified=t.modified,
                removed=t.removed,
                skipped=t.skipped,
                status=t.status.value,
                error=t.error,
            )
            for t in report.tallies
        ],
    )
