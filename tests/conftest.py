"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from db_setup import ContactStore, init_db
from main import app, get_contact_store

T0 = datetime(2023, 4, 1, 9, 0, 0)


def at(hours: int) -> datetime:
    """Timestamp `hours` after a fixed origin, for controlling seniority."""
    return T0 + timedelta(hours=hours)


def count_rows(store: ContactStore) -> int:
    return store.conn.execute("SELECT COUNT(*) FROM Contact").fetchone()[0]


@pytest.fixture
def db_path(tmp_path) -> str:
    path = str(tmp_path / "contacts.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    store = ContactStore.connect(db_path)
    yield store
    store.close()


@pytest.fixture
def client(db_path):
    """TestClient whose requests use the temporary database."""

    def override():
        store = ContactStore.connect(db_path)
        try:
            yield store
        finally:
            store.close()

    app.dependency_overrides[get_contact_store] = override
    yield TestClient(app)
    app.dependency_overrides.clear()
