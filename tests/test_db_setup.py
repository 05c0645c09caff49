"""
Tests for db_setup.py - schema and ContactStore operations.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from db_models import LinkPrecedence
from db_setup import ContactStore, init_db
from tests.conftest import at, count_rows


class TestInitDb:
    """Test database initialization."""

    def test_init_is_repeatable(self, tmp_path):
        path = str(tmp_path / "c.db")
        init_db(path)
        init_db(path)

        store = ContactStore.connect(path)
        assert count_rows(store) == 0
        store.close()

    def test_rejects_unknown_precedence(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            store.conn.execute("INSERT INTO Contact (email, linkPrecedence) VALUES ('a@x.com', 'tertiary')")


class TestContactStore:
    """Test the storage collaborator contract."""

    def test_insert_and_get(self, store):
        contact_id = store.insert_contact("a@x.com", "111", created_at=at(0))

        contact = store.get(contact_id)
        assert contact.email == "a@x.com"
        assert contact.phoneNumber == "111"
        assert contact.linkedId is None
        assert contact.linkPrecedence is LinkPrecedence.PRIMARY
        assert contact.createdAt == at(0)

    def test_aware_created_at_is_stored_as_naive_utc(self, store):
        aware = datetime(2023, 4, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        contact_id = store.insert_contact("a@x.com", "111", created_at=aware)

        contact = store.get(contact_id)
        assert contact.createdAt == datetime(2023, 4, 1, 9, 0)
        assert contact.createdAt.tzinfo is None
        assert contact.updatedAt.tzinfo is None

    def test_mixed_timestamp_inputs_sort_chronologically(self, store):
        later = store.insert_contact("a@x.com", "111", created_at=datetime(2023, 4, 1, 9, 0, 0, 500))
        earlier = store.insert_contact(
            "b@x.com", "111", created_at=datetime(2023, 4, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        )

        assert [c.id for c in store.find_matching(phone="111")] == [later, earlier]

    def test_insert_with_explicit_id(self, store):
        assert store.insert_contact("a@x.com", contact_id=42) == 42
        assert store.get(42).email == "a@x.com"

    def test_get_missing(self, store):
        assert store.get(999) is None

    def test_find_matching_uses_only_supplied_fields(self, store):
        store.insert_contact(None, "111", created_at=at(0))
        store.insert_contact("a@x.com", None, created_at=at(1))

        assert [c.phoneNumber for c in store.find_matching(phone="111")] == ["111"]
        assert [c.email for c in store.find_matching(email="a@x.com")] == ["a@x.com"]
        assert store.find_matching() == []

    def test_find_matching_skips_deleted_rows(self, store):
        contact_id = store.insert_contact("a@x.com", "111")
        store.conn.execute("UPDATE Contact SET deletedAt = ? WHERE id = ?", (at(3).isoformat(), contact_id))

        assert store.find_matching("a@x.com", "111") == []

    def test_find_linked(self, store):
        primary = store.insert_contact("a@x.com", "111", created_at=at(0))
        s1 = store.insert_contact("b@x.com", None, primary, LinkPrecedence.SECONDARY, created_at=at(2))
        s2 = store.insert_contact("c@x.com", None, primary, LinkPrecedence.SECONDARY, created_at=at(1))

        assert [c.id for c in store.find_linked(primary)] == [s2, s1]
        assert [c.id for c in store.find_linked(primary, include_id=primary)] == [primary, s2, s1]

    def test_update_link_touches_updated_at(self, store):
        a = store.insert_contact("a@x.com", "111", created_at=at(0))
        b = store.insert_contact("b@x.com", "222", created_at=at(1))
        before = store.get(b).updatedAt

        store.update_link(b, a, LinkPrecedence.SECONDARY)

        after = store.get(b)
        assert after.linkedId == a
        assert after.linkPrecedence is LinkPrecedence.SECONDARY
        assert after.updatedAt >= before
        assert after.createdAt == at(1)

    def test_transaction_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_contact("a@x.com", "111")
                raise RuntimeError("boom")

        assert count_rows(store) == 0

    def test_transaction_keeps_original_error_after_sqlite_rollback(self, store):
        with pytest.raises(RuntimeError, match="boom"):
            with store.transaction():
                store.insert_contact("a@x.com", "111")
                store.conn.execute("ROLLBACK")
                raise RuntimeError("boom")

        assert not store.conn.in_transaction
        assert count_rows(store) == 0

    def test_failed_commit_leaves_no_open_transaction(self, store):
        class FailingCommit:
            def __init__(self, conn):
                self.conn = conn

            def execute(self, sql, *args):
                if sql == "COMMIT":
                    raise sqlite3.OperationalError("disk I/O error")
                return self.conn.execute(sql, *args)

            @property
            def in_transaction(self):
                return self.conn.in_transaction

        real = store.conn
        store.conn = FailingCommit(real)
        with pytest.raises(sqlite3.OperationalError):
            with store.transaction():
                store.insert_contact("a@x.com", "111")
        store.conn = real

        assert not real.in_transaction
        assert count_rows(store) == 0

    def test_transaction_commits(self, store, db_path):
        with store.transaction():
            store.insert_contact("a@x.com", "111")

        other = ContactStore.connect(db_path)
        assert count_rows(other) == 1
        other.close()
