"""Link API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from api.helpers import get_store, get_upstream_client
from integrations.exceptions import ProviderError
from integrations.provider_protocol import UpstreamClient
from schemas.link import LinkStatusResponse
from services.errors import StoreError, StoreErrorKind
from services.ledger_store import LedgerStore
from services.link_service import LinkService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/links", tags=["links"])


def get_link_service(
    store: LedgerStore = Depends(get_store),
    client: UpstreamClient = Depends(get_upstream_client),
) -> LinkService:
    return LinkService(store, client)


@router.get("", response_model=list[LinkStatusResponse])
def list_links(service: LinkService = Depends(get_link_service)):
    """Check every link upstream and return its current state."""
    return [
        LinkStatusResponse(
            alias=row.alias,
            item_id=row.item_id,
            institution_name=row.institution_name,
            status=row.status.value,
            reason=row.reason,
        )
        for row in service.check_status()
    ]


@router.delete("/{item_id}", status_code=204)
def delete_link(item_id: str, service: LinkService = Depends(get_link_service)):
    """Revoke a link upstream, then remove it locally.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown item id
            - 502 Bad Gateway: Revocation failed; nothing was deleted
    """
    try:
        service.delete_link(item_id)
    except StoreError as e:
        if e.kind is StoreErrorKind.NOT_FOUND:
            raise HTTPException(status_code=404, detail="Link not found")
        raise
    except ProviderError as e:
        logger.warning("Failed to revoke link %s: %s", item_id, e)
        raise HTTPException(
            status_code=502,
            detail="Could not revoke the link upstream; it was not removed.",
        )
    return Response(status_code=204)
