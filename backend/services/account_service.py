"""Account listing and live balances for linked accounts."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config import settings
from integrations.currency import CurrencyTable, Money
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.provider_protocol import AccountType, UpstreamClient
from services.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class TrackedAccount:
    """One line of the ``accounts`` listing."""

    alias: str
    institution_name: str | None
    account_id: str
    name: str
    type: AccountType
    mask: str | None
    ledger_name: str


@dataclass
class AccountBalance:
    name: str
    type: AccountType
    available: Money | None
    current: Money | None


@dataclass
class BalanceReport:
    """Balances split into assets and liabilities, plus per-link failures."""

    assets: list[AccountBalance] = field(default_factory=list)
    liabilities: list[AccountBalance] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class AccountService:
    """Reads tracked accounts from the store and balances from upstream."""

    def __init__(
        self,
        store: LedgerStore,
        client: Optional[UpstreamClient] = None,
        currencies: Optional[CurrencyTable] = None,
    ):
        self._store = store
        self._client = client
        self._currencies = currencies or CurrencyTable.iso(settings.DEFAULT_CURRENCY)

    @property
    def client(self) -> UpstreamClient:
        if self._client is None:
            from integrations.plaid_client import PlaidClient

            self._client = PlaidClient()
        return self._client

    def tracked_accounts(self) -> list[TrackedAccount]:
        """Accounts of every link, grouped by link in link order."""
        names = {i.id: i.name for i in self._store.list_institutions()}
        rows: list[TrackedAccount] = []
        for link in self._store.list_links():
            institution = names.get(link.institution_id, link.institution_id)
            for account in self._store.accounts_by_item(link.item_id):
                rows.append(TrackedAccount(
                    alias=link.alias,
                    institution_name=institution,
                    account_id=account.id,
                    name=account.name,
                    type=account.type,
                    mask=account.mask,
                    ledger_name=account.ledger_name,
                ))
        return rows

    def balances(self) -> BalanceReport:
        """Fetch current balances for every active link.

        A link whose credential was rejected is marked degraded; any failing
        link is reported in ``errors`` and the others are still listed.
        """
        report = BalanceReport()
        for link in self._store.list_links():
            if not link.is_active:
                report.errors[link.item_id] = f"link is degraded: {link.degraded_reason}"
                continue
            try:
                balances = self.client.get_balances(link.access_token)
            except ProviderAuthError as e:
                self._store.mark_degraded(link.item_id, str(e))
                report.errors[link.item_id] = str(e)
                continue
            except ProviderError as e:
                logger.warning("Could not fetch balances of link %s: %s", link.item_id, e)
                report.errors[link.item_id] = str(e)
                continue

            for balance in balances:
                row = AccountBalance(
                    name=balance.name,
                    type=balance.type,
                    available=self._money(balance.available, balance.currency),
                    current=self._money(balance.current, balance.currency),
                )
                if balance.type is AccountType.CREDIT_NORMAL:
                    report.liabilities.append(row)
                else:
                    report.assets.append(row)
        return report

    def _money(self, amount, currency: str | None) -> Money | None:
        if amount is None:
            return None
        return self._currencies.money(amount, currency)
