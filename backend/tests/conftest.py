"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base.metadata)
from api.helpers import get_store, get_upstream_client
from api.ledger import get_rule_transformer
from database import Base, enable_sqlite_foreign_keys
from integrations.provider_protocol import Link
from main import app
from services.ledger_store import LedgerStore
from services.rule_service import RuleTransformer
from services.sync_service import SyncService
from tests.fixtures.mocks import SAMPLE_ACCOUNTS, FakeUpstreamClient


@pytest.fixture(name="session_factory")
def session_factory_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)

    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="count_rows")
def count_rows_fixture(session_factory):
    """Return a helper counting rows of a model in a fresh session."""

    def count(model, *criteria) -> int:
        with session_factory() as session:
            stmt = select(func.count()).select_from(model)
            for criterion in criteria:
                stmt = stmt.where(criterion)
            return session.execute(stmt).scalar_one()

    return count


@pytest.fixture(name="store")
def store_fixture(session_factory):
    return LedgerStore(session_factory)


@pytest.fixture(name="link")
def link_fixture(store):
    """A stored active link owning the sample accounts."""
    link = Link(item_id="item_1", access_token="access-sandbox-1", alias="chase")
    store.save_link(link)
    for account in SAMPLE_ACCOUNTS:
        store.save_account(link.item_id, account)
    return link


@pytest.fixture(name="fake_client")
def fake_client_fixture():
    return FakeUpstreamClient()


@pytest.fixture(name="sync_service")
def sync_service_fixture(store, fake_client):
    return SyncService(store, fake_client, page_size=100, include_pending=True, max_workers=1)


@pytest.fixture(name="client")
def client_fixture(store, fake_client):
    """Create a test client wired to the test store and a fake upstream."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_upstream_client] = lambda: fake_client
    app.dependency_overrides[get_rule_transformer] = lambda: RuleTransformer()
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
