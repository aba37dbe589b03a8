"""Integration tests for link API endpoints."""

from integrations.exceptions import ProviderAPIError
from models import LedgerTransaction
from tests.fixtures.mocks import make_entry


def test_list_links(client, link):
    response = client.get("/api/links")

    assert response.status_code == 200
    assert response.json() == [{
        "alias": "chase",
        "item_id": "item_1",
        "institution_name": "Chase",
        "status": "ACTIVE",
        "reason": None,
    }]


def test_list_links_empty(client):
    response = client.get("/api/links")
    assert response.status_code == 200
    assert response.json() == []


def test_delete_link(client, fake_client, store, link, count_rows):
    store.save_transaction(link.item_id, make_entry("tx-1", txn_id="L1"))

    response = client.delete("/api/links/item_1")

    assert response.status_code == 204
    assert fake_client.removed_tokens == ["access-sandbox-1"]
    assert store.get_link("item_1") is None
    assert count_rows(LedgerTransaction) == 1


def test_delete_unknown_link(client):
    response = client.delete("/api/links/nope")
    assert response.status_code == 404


def test_delete_link_revocation_failure(client, fake_client, store, link):
    fake_client._remove_error = ProviderAPIError(
        "Plaid error", provider_name="Plaid", status_code=500
    )

    response = client.delete("/api/links/item_1")

    assert response.status_code == 502
    assert store.get_link("item_1") is not None
