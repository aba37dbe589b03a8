"""Tests for the command-line interface."""

from unittest.mock import patch

import pytest

import cli
from integrations.provider_protocol import LinkStatus
from tests.fixtures.mocks import FakeUpstreamClient, login_required_error, make_entry


@pytest.fixture(autouse=True)
def _use_test_store(store, monkeypatch):
    monkeypatch.setattr(cli, "_store", lambda: store)


class TestLinkAdd:
    def test_registers_link(self, store, capsys):
        assert cli.main(["link", "add", "item_9", "access-9", "--alias", "amex"]) == 0

        link = store.get_link("item_9")
        assert link.access_token == "access-9"
        assert link.alias == "amex"
        assert "Linked item_9 (amex)" in capsys.readouterr().out


class TestPrint:
    def test_prints_ledger(self, store, link, capsys):
        store.save_transaction(link.item_id, make_entry("tx-1", txn_id="L1"))

        assert cli.main(["print", "--begin", "2024-05-01", "--until", "2024-05-31"]) == 0

        out = capsys.readouterr().out
        assert out.startswith("2024-05-01 * Starbucks\n")
        assert "Assets:Checking" in out

    def test_rejects_bad_date(self):
        with pytest.raises(SystemExit):
            cli.main(["print", "--begin", "May 1st"])


class TestStatus:
    def test_no_links(self, capsys):
        assert cli.main(["status"]) == 0
        assert "No links" in capsys.readouterr().out

    def test_lists_degraded_link(self, store, link, capsys):
        store.mark_degraded(link.item_id, "ITEM_LOGIN_REQUIRED")
        fake = FakeUpstreamClient(item_error=login_required_error())
        with patch("services.link_service.LinkService.client", new=fake):
            assert cli.main(["status"]) == 0

        out = capsys.readouterr().out
        assert "chase" in out
        assert LinkStatus.DEGRADED.value in out


class TestAccounts:
    def test_lists_tracked_accounts(self, link, capsys):
        assert cli.main(["accounts"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["Alias", "Institution", "Account", "Mask", "Type", "Ledger", "account"]
        assert lines[1].split() == ["chase", "-", "Checking", "0000", "DEBIT_NORMAL", "Assets:Checking"]
        assert lines[2].split() == [
            "chase", "-", "Sapphire", "3333", "CREDIT_NORMAL", "Liabilities:Sapphire",
        ]

    def test_no_accounts(self, capsys):
        assert cli.main(["accounts"]) == 0
        assert "No accounts" in capsys.readouterr().out

    def test_balance(self, link, capsys):
        with patch("services.account_service.AccountService.client", new=FakeUpstreamClient()):
            assert cli.main(["accounts", "balance"]) == 0

        out = capsys.readouterr().out
        assets, liabilities = out.split("Liabilities")
        assert "Checking" in assets
        assert "100.50 USD" in assets
        assert "110.50 USD" in assets
        assert "Sapphire" in liabilities
        assert "42.00 USD" in liabilities

    def test_balance_failure_exit_code(self, link, capsys):
        fake = FakeUpstreamClient(balances_error=login_required_error())
        with patch("services.account_service.AccountService.client", new=fake):
            assert cli.main(["accounts", "balance"]) == 1

        assert "Could not fetch balances for item_1" in capsys.readouterr().out


class TestDelete:
    def test_unknown_link(self, capsys):
        assert cli.main(["delete", "nope"]) == 1
        assert "not found" in capsys.readouterr().out


class TestInit:
    def test_stores_credentials(self, monkeypatch):
        answers = iter(["client-id", "secret"])
        monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
        with patch("services.credential_manager.set_credential", return_value=True) as mock_set:
            assert cli.main(["init"]) == 0
        mock_set.assert_any_call("PLAID_CLIENT_ID", "client-id")
        mock_set.assert_any_call("PLAID_SECRET", "secret")

    def test_missing_client_id(self, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda prompt: "")
        assert cli.main(["init"]) == 1

    def test_keychain_failure(self, monkeypatch, capsys):
        answers = iter(["client-id", "secret"])
        monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
        with patch("services.credential_manager.set_credential", return_value=False):
            assert cli.main(["init"]) == 1
        assert "Failed to store PLAID_CLIENT_ID, PLAID_SECRET" in capsys.readouterr().out
