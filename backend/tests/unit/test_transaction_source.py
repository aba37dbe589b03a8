"""Tests for canonical construction and cursor paging in TransactionSource."""

from datetime import date
from decimal import Decimal
from itertools import count

import pytest

from integrations.currency import CurrencyTable, Money
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderDataError,
    SyncProtocolError,
)
from integrations.provider_protocol import (
    AccountType,
    AddedEvent,
    ChangeKind,
    ModifiedEvent,
    RemovedEvent,
    TransactionStatus,
)
from integrations.transaction_source import (
    MUTATION_DURING_PAGINATION,
    OffsetAccounts,
    TransactionSource,
    to_canonical_transaction,
)
from tests.fixtures.mocks import FakeUpstreamClient, make_page, make_raw_txn


@pytest.fixture
def currencies():
    return CurrencyTable.iso("USD")


def _source(client, **kwargs):
    ids = count(1)
    return TransactionSource(
        client,
        "access-sandbox-1",
        CurrencyTable.iso("USD"),
        page_size=100,
        account_types={"acc_checking": AccountType.DEBIT_NORMAL},
        id_factory=lambda: f"txn-{next(ids)}",
        **kwargs,
    )


# ---------------------------------------------------------------------------
# to_canonical_transaction
# ---------------------------------------------------------------------------


class TestToCanonicalTransaction:
    def test_purchase_on_debit_account(self, currencies):
        raw = make_raw_txn("tx-1", amount=4.33)
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L1")

        assert txn.id == "L1"
        assert txn.date == date(2024, 5, 1)
        assert txn.status is TransactionStatus.RESOLVED
        assert txn.payee == "Starbucks"
        assert txn.narration == "STARBUCKS STORE 1234"
        funding, offset = txn.postings
        assert funding.account == "acc_checking"
        assert funding.units == Money(Decimal("-4.33"), "USD")
        assert offset.account == "Expenses:Unclassified"
        assert offset.units == Money(Decimal("4.33"), "USD")
        assert txn.is_balanced()

    def test_inflow_on_debit_account_offsets_income(self, currencies):
        raw = make_raw_txn("tx-2", amount=-1500, name="PAYROLL", merchant_name=None)
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L2")

        assert txn.postings[0].units.amount == Decimal("1500.00")
        assert txn.postings[1].account == "Income:Unclassified"
        assert txn.payee is None
        assert txn.is_balanced()

    def test_payment_on_credit_account_offsets_payment_account(self, currencies):
        raw = make_raw_txn("tx-3", amount=-200, account_id="acc_credit")
        offsets = OffsetAccounts(payment="Assets:Checking")
        txn = to_canonical_transaction(raw, AccountType.CREDIT_NORMAL, currencies, offsets, "L3")

        assert txn.postings[1].account == "Assets:Checking"

    def test_pending_status_on_every_posting(self, currencies):
        raw = make_raw_txn("tx-4", pending=True)
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L4")

        assert txn.status is TransactionStatus.PENDING
        assert {p.status for p in txn.postings} == {TransactionStatus.PENDING}

    def test_tags_and_metadata(self, currencies):
        raw = make_raw_txn("tx-5", pending_transaction_id="p-5")
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L5")

        assert txn.tags == ("food-and-drink",)
        assert txn.links == ("p-5",)
        assert txn.metadata == {
            "upstream_id": "tx-5",
            "account_id": "acc_checking",
            "pending_transaction_id": "p-5",
        }

    def test_deterministic_for_same_input(self, currencies):
        raw = make_raw_txn("tx-6")
        first = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L6")
        second = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L6")
        assert first == second

    def test_generates_ulid_when_no_id_given(self, currencies):
        txn = to_canonical_transaction(make_raw_txn("tx-7"), AccountType.DEBIT_NORMAL, currencies)
        assert len(txn.id) == 26

    def test_unknown_currency_falls_back_to_default(self, currencies):
        raw = make_raw_txn("tx-8", currency="ZZZ")
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L8")
        assert txn.postings[0].units.currency == "USD"

    def test_unofficial_currency_code_used(self, currencies):
        raw = make_raw_txn("tx-9", currency=None)
        raw["unofficial_currency_code"] = "EUR"
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L9")
        assert txn.postings[0].units.currency == "EUR"

    def test_authorized_date_used_when_date_missing(self, currencies):
        raw = make_raw_txn("tx-10")
        raw["date"] = None
        raw["authorized_date"] = "2024-04-30"
        txn = to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies, txn_id="L10")
        assert txn.date == date(2024, 4, 30)

    @pytest.mark.parametrize("missing", ["transaction_id", "account_id", "date", "amount"])
    def test_missing_required_field_raises(self, currencies, missing):
        raw = make_raw_txn("tx-11")
        raw[missing] = None
        with pytest.raises(ProviderDataError):
            to_canonical_transaction(raw, AccountType.DEBIT_NORMAL, currencies)


class TestOffsetAccounts:
    def test_for_flow(self):
        offsets = OffsetAccounts(expense="E", income="I", payment="P")
        assert offsets.for_flow(AccountType.DEBIT_NORMAL, Decimal("1")) == "E"
        assert offsets.for_flow(AccountType.CREDIT_NORMAL, Decimal("1")) == "E"
        assert offsets.for_flow(AccountType.DEBIT_NORMAL, Decimal("-1")) == "I"
        assert offsets.for_flow(AccountType.CREDIT_NORMAL, Decimal("-1")) == "P"


# ---------------------------------------------------------------------------
# TransactionSource.pull
# ---------------------------------------------------------------------------


class TestPull:
    def test_single_terminal_page(self):
        client = FakeUpstreamClient(pages=[
            make_page(added=[make_raw_txn("tx-1")], removed=["tx-0"], next_cursor="c1"),
        ])
        events, cursor = _source(client).pull(None)

        assert cursor == "c1"
        assert [e.kind for e in events] == [ChangeKind.ADDED, ChangeKind.REMOVED]
        assert isinstance(events[0], AddedEvent)
        assert events[0].entry.upstream_id == "tx-1"
        assert events[0].entry.canonical.id == "txn-1"
        assert events[1] == RemovedEvent("tx-0")
        assert client.sync_calls == [("access-sandbox-1", None, 100)]

    def test_exhausts_all_pages_in_order(self):
        client = FakeUpstreamClient(pages=[
            make_page(added=[make_raw_txn("tx-1")], next_cursor="c1", has_more=True),
            make_page(modified=[make_raw_txn("tx-1", amount=5)], next_cursor="c2", has_more=True),
            make_page(added=[make_raw_txn("tx-2")], next_cursor="c3"),
        ])
        events, cursor = _source(client).pull("c0")

        assert cursor == "c3"
        assert [c[1] for c in client.sync_calls] == ["c0", "c1", "c2"]
        assert [e.entry.upstream_id for e in events if not isinstance(e, RemovedEvent)] == [
            "tx-1", "tx-2", "tx-1",
        ]
        assert isinstance(events[-1], ModifiedEvent)

    def test_terminal_page_without_cursor_is_protocol_error(self):
        client = FakeUpstreamClient(pages=[make_page(next_cursor=None)])
        with pytest.raises(SyncProtocolError):
            _source(client).pull(None)

    def test_feed_ending_without_terminal_page_is_protocol_error(self):
        client = FakeUpstreamClient(pages=[
            make_page(next_cursor="c1", has_more=True),
            {},
        ])
        with pytest.raises(SyncProtocolError):
            _source(client).pull(None)

    def test_page_without_progress_is_protocol_error(self):
        client = FakeUpstreamClient(pages=[make_page(next_cursor="c0", has_more=True)])
        with pytest.raises(SyncProtocolError):
            _source(client).pull("c0")

    def test_mutation_during_pagination_restarts_from_original_cursor(self):
        mutation = ProviderAPIError(
            "changed", provider_name="Plaid", status_code=400,
            error_code=MUTATION_DURING_PAGINATION,
        )
        client = FakeUpstreamClient(pages=[
            make_page(added=[make_raw_txn("tx-stale")], next_cursor="c1", has_more=True),
            mutation,
            make_page(added=[make_raw_txn("tx-1")], next_cursor="c9"),
        ])
        events, cursor = _source(client).pull("c0")

        assert cursor == "c9"
        assert [e.entry.upstream_id for e in events] == ["tx-1"]
        assert [c[1] for c in client.sync_calls] == ["c0", "c1", "c0"]

    def test_restarts_are_bounded(self):
        mutation = ProviderAPIError(
            "changed", provider_name="Plaid", status_code=400,
            error_code=MUTATION_DURING_PAGINATION,
        )
        client = FakeUpstreamClient(pages=[mutation, mutation])
        with pytest.raises(ProviderAPIError):
            _source(client, max_restarts=1).pull(None)

    def test_auth_error_propagates(self):
        client = FakeUpstreamClient(pages=[ProviderAuthError("login", error_code="ITEM_LOGIN_REQUIRED")])
        with pytest.raises(ProviderAuthError):
            _source(client).pull(None)

    def test_unknown_account_treated_as_debit_normal(self, caplog):
        client = FakeUpstreamClient(pages=[
            make_page(added=[make_raw_txn("tx-1", account_id="acc_new", amount=-10)]),
        ])
        events, _ = _source(client).pull(None)

        assert events[0].entry.canonical.postings[1].account == "Income:Unclassified"
        assert "acc_new" in caplog.text

    def test_accounts_registers_types(self):
        client = FakeUpstreamClient(pages=[
            make_page(added=[make_raw_txn("tx-1", account_id="acc_credit", amount=-50)]),
        ])
        source = _source(client)
        accounts = source.accounts()
        events, _ = source.pull(None)

        assert {a.id for a in accounts} == {"acc_checking", "acc_credit"}
        assert events[0].entry.canonical.postings[1].account == "Assets:Unclassified"
