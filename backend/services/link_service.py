"""Link maintenance: registration, status checks and removal."""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from config import settings
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.provider_protocol import Link, LinkStatus, UpstreamClient
from services.errors import StoreError, StoreErrorKind
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class LinkStatusRow:
    """One line of the ``status`` listing."""

    alias: str
    item_id: str
    institution_name: str | None
    status: LinkStatus
    reason: str | None = None


class LinkService:
    """Service for managing upstream links."""

    def __init__(
        self,
        store: LedgerStore,
        client: Optional[UpstreamClient] = None,
        country_codes: Optional[list[str]] = None,
    ):
        self._store = store
        self._client = client
        self._country_codes = country_codes or settings.PLAID_COUNTRY_CODES

    @property
    def client(self) -> UpstreamClient:
        if self._client is None:
            from integrations.plaid_client import PlaidClient

            self._client = PlaidClient()
        return self._client

    def add_link(
        self,
        item_id: str,
        access_token: str,
        alias: str = "",
        institution_id: str | None = None,
    ) -> Link:
        """Persist the result of an external authorization flow.

        Re-adding a known item replaces its credential and reactivates it;
        the sync cursor is kept.
        """
        existing = self._store.get_link(item_id)
        if existing is None:
            link = Link(
                item_id=item_id,
                access_token=access_token,
                alias=alias,
                institution_id=institution_id,
            )
            self._store.save_link(link)
            return link

        link = replace(
            existing,
            access_token=access_token,
            alias=alias or existing.alias,
            institution_id=institution_id or existing.institution_id,
            status=LinkStatus.ACTIVE,
            degraded_reason=None,
        )
        self._store.update_link(link)
        logger.info("Re-authorized link %s", item_id)
        return link

    def check_status(self) -> list[LinkStatusRow]:
        """Query every link's upstream state, demoting links whose credential failed.

        Also refreshes the institution cache and, for healthy links, their
        accounts.
        """
        links = self._store.list_links()
        rows: list[LinkStatusRow] = []
        for link in links:
            link = self._check_link(link)
            rows.append(LinkStatusRow(
                alias=link.alias,
                item_id=link.item_id,
                institution_name=None,
                status=link.status,
                reason=link.degraded_reason,
            ))

        # Institution ids may have been filled in by the checks above.
        refreshed = self._store.list_links()
        self._refresh_institutions(refreshed)
        names = {i.id: i.name for i in self._store.list_institutions()}
        institution_ids = {link.item_id: link.institution_id for link in refreshed}
        for row in rows:
            institution_id = institution_ids.get(row.item_id)
            row.institution_name = names.get(institution_id, institution_id)
        return rows

    def _check_link(self, link: Link) -> Link:
        try:
            item = self.client.get_item(link.access_token)
        except ProviderAuthError as e:
            self._store.mark_degraded(link.item_id, str(e))
            return replace(link, status=LinkStatus.DEGRADED, degraded_reason=str(e))
        except ProviderError as e:
            logger.warning("Could not check status of link %s: %s", link.item_id, e)
            return link

        if item.requires_login:
            reason = item.error_message or item.error_code
            self._store.mark_degraded(link.item_id, reason)
            return replace(link, status=LinkStatus.DEGRADED, degraded_reason=reason)

        if item.institution_id and item.institution_id != link.institution_id:
            link = replace(link, institution_id=item.institution_id)
            self._store.update_link(link)

        if link.is_active:
            try:
                for account in self.client.list_accounts(link.access_token):
                    self._store.save_account(link.item_id, account)
            except ProviderError as e:
                logger.warning("Could not refresh accounts of link %s: %s", link.item_id, e)
        return link

    def _refresh_institutions(self, links: list[Link]) -> None:
        known = {i.id for i in self._store.list_institutions()}
        wanted = {link.institution_id for link in links if link.institution_id}
        if wanted <= known:
            return
        try:
            institutions = self.client.list_institutions(self._country_codes)
        except ProviderError as e:
            logger.warning("Could not refresh institutions: %s", e)
            return
        for institution in institutions:
            self._store.save_institution(institution)
        logger.info("Cached %d institutions", len(institutions))

    def delete_link(self, item_id: str) -> None:
        """Revoke the credential upstream, then delete local state.

        If revocation fails the error propagates and nothing is deleted.

        Raises:
            StoreError: ``NOT_FOUND`` for an unknown item id.
            ProviderError: Revocation failed upstream.
        """
        link = self._store.get_link(item_id)
        if link is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"Link {item_id} not found")
        self.client.remove_item(link.access_token)
        self._store.delete_link(item_id)
        logger.info("Removed link %s (%s)", item_id, link.alias)
