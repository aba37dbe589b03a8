"""Mock implementations for external services."""

from decimal import Decimal

from integrations.currency import CurrencyTable
from integrations.exceptions import ProviderAuthError
from integrations.provider_protocol import (
    AccountType,
    ProviderAccount,
    ProviderBalance,
    ProviderInstitution,
    ProviderItem,
    TransactionEntry,
)
from integrations.transaction_source import to_canonical_transaction

SAMPLE_ACCOUNTS = [
    ProviderAccount(id="acc_checking", name="Checking", type=AccountType.DEBIT_NORMAL, mask="0000"),
    ProviderAccount(id="acc_credit", name="Sapphire", type=AccountType.CREDIT_NORMAL, mask="3333"),
]

SAMPLE_BALANCES = [
    ProviderBalance(
        account_id="acc_checking", name="Checking", type=AccountType.DEBIT_NORMAL,
        available=Decimal("100.5"), current=Decimal("110.5"), currency="USD",
    ),
    ProviderBalance(
        account_id="acc_credit", name="Sapphire", type=AccountType.CREDIT_NORMAL,
        available=None, current=Decimal("42"), currency="USD",
    ),
]

SAMPLE_INSTITUTIONS = [
    ProviderInstitution(id="ins_3", name="Chase"),
    ProviderInstitution(id="ins_4", name="Wells Fargo"),
]


def make_raw_txn(
    transaction_id: str,
    amount=4.33,
    account_id: str = "acc_checking",
    txn_date: str = "2024-05-01",
    pending: bool = False,
    name: str = "STARBUCKS STORE 1234",
    merchant_name: str | None = "Starbucks",
    pending_transaction_id: str | None = None,
    currency: str | None = "USD",
    category: str | None = "FOOD_AND_DRINK",
) -> dict:
    """Build a raw transaction dict shaped like Plaid's /transactions/sync records."""
    raw = {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "amount": amount,
        "iso_currency_code": currency,
        "unofficial_currency_code": None,
        "date": txn_date,
        "authorized_date": None,
        "name": name,
        "merchant_name": merchant_name,
        "pending": pending,
        "pending_transaction_id": pending_transaction_id,
    }
    if category:
        raw["personal_finance_category"] = {"primary": category, "detailed": f"{category}_OTHER"}
    return raw


def make_page(added=(), modified=(), removed=(), next_cursor="cursor-1", has_more=False) -> dict:
    """Build one /transactions/sync page."""
    return {
        "added": list(added),
        "modified": list(modified),
        "removed": [{"transaction_id": tid} for tid in removed],
        "next_cursor": next_cursor,
        "has_more": has_more,
    }


class FakeUpstreamClient:
    """In-memory UpstreamClient with scripted change-feed pages.

    ``pages`` is either a list consumed by every link or a dict mapping an
    access token to its own list. Each entry is a page dict, or an exception
    instance to raise for that call.
    """

    def __init__(
        self,
        accounts: list[ProviderAccount] | None = None,
        pages=None,
        item: ProviderItem | None = None,
        institutions: list[ProviderInstitution] | None = None,
        balances: list[ProviderBalance] | None = None,
        balances_error: Exception | None = None,
        accounts_error: Exception | None = None,
        item_error: Exception | None = None,
        remove_error: Exception | None = None,
    ):
        self._accounts = list(SAMPLE_ACCOUNTS if accounts is None else accounts)
        self._pages = pages if pages is not None else []
        self._item = item
        self._institutions = list(SAMPLE_INSTITUTIONS if institutions is None else institutions)
        self._balances = list(SAMPLE_BALANCES if balances is None else balances)
        self._balances_error = balances_error
        self._accounts_error = accounts_error
        self._item_error = item_error
        self._remove_error = remove_error

        self.sync_calls: list[tuple[str, str | None, int]] = []
        self.removed_tokens: list[str] = []
        self.institution_calls = 0

    @property
    def provider_name(self) -> str:
        return "Plaid"

    def list_accounts(self, access_token: str) -> list[ProviderAccount]:
        if self._accounts_error:
            raise self._accounts_error
        return list(self._accounts)

    def get_balances(self, access_token: str) -> list[ProviderBalance]:
        if self._balances_error:
            raise self._balances_error
        return list(self._balances)

    def get_item(self, access_token: str) -> ProviderItem:
        if self._item_error:
            raise self._item_error
        return self._item or ProviderItem(item_id="item_1", institution_id="ins_3")

    def sync_transactions(self, access_token: str, cursor: str | None, count: int) -> dict:
        self.sync_calls.append((access_token, cursor, count))
        queue = self._pages.get(access_token, []) if isinstance(self._pages, dict) else self._pages
        if not queue:
            raise AssertionError(f"No scripted page left for {access_token}")
        step = queue.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def list_institutions(self, country_codes: list[str]) -> list[ProviderInstitution]:
        self.institution_calls += 1
        return list(self._institutions)

    def remove_item(self, access_token: str) -> None:
        if self._remove_error:
            raise self._remove_error
        self.removed_tokens.append(access_token)


def login_required_error() -> ProviderAuthError:
    return ProviderAuthError(
        "Plaid error (ITEM_LOGIN_REQUIRED): the login details of this item have changed",
        provider_name="Plaid",
        error_code="ITEM_LOGIN_REQUIRED",
    )


def make_entry(upstream_id: str, txn_id: str | None = None, account_type=AccountType.DEBIT_NORMAL, **raw_kwargs):
    """Build a TransactionEntry the way TransactionSource does."""
    raw = make_raw_txn(upstream_id, **raw_kwargs)
    canonical = to_canonical_transaction(raw, account_type, CurrencyTable.iso("USD"), txn_id=txn_id)
    return TransactionEntry(canonical=canonical, source=raw)
