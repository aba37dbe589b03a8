"""Integration tests for sync API endpoints."""

from models import LedgerTransaction
from services.sync_service import SyncService
from tests.fixtures.mocks import login_required_error, make_page, make_raw_txn


def test_sync_stores_transactions(client, fake_client, link, count_rows):
    fake_client._pages.append(
        make_page(added=[make_raw_txn("tx-1"), make_raw_txn("tx-2")], next_cursor="c1")
    )

    response = client.post("/api/sync")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["tallies"] == [{
        "item_id": "item_1",
        "added": 2,
        "modified": 0,
        "removed": 0,
        "skipped": 0,
        "status": "success",
        "error": None,
    }]
    assert count_rows(LedgerTransaction) == 2


def test_sync_reports_degraded_link(client, fake_client, link):
    fake_client._pages.append(login_required_error())

    response = client.post("/api/sync")

    assert response.status_code == 200
    [tally] = response.json()["tallies"]
    assert tally["status"] == "degraded"
    assert "ITEM_LOGIN_REQUIRED" in tally["error"]


def test_sync_reports_failed_link(client, fake_client, link):
    fake_client._pages.append({"added": [], "next_cursor": "c1"})

    response = client.post("/api/sync")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert body["tallies"][0]["status"] == "failed"


def test_sync_without_links(client):
    response = client.post("/api/sync")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "tallies": []}


def test_sync_in_progress_returns_409(client, link):
    SyncService._sync_lock.acquire()
    try:
        response = client.post("/api/sync")
    finally:
        SyncService._sync_lock.release()

    assert response.status_code == 409
    assert "in progress" in response.json()["detail"]
