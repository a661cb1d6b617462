"""
Unit tests for the postgres_store module.

The psycopg2 connection pool is mocked; these tests check transaction
handling and the SQL issued, not a live database.
"""

from unittest.mock import MagicMock

import psycopg2
import pytest

from event_ingest.ingestion.errors import PersistenceError
from event_ingest.storage.postgres_store import PostgresEventStore


@pytest.fixture
def mock_db():
    """Pool, connection and cursor wired the way psycopg2 hands them out."""
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()
    pool.getconn.return_value = conn
    return pool, conn, cursor


class TestTransaction:
    """Tests for PostgresEventStore.transaction."""

    def test_commit(self, mock_db):
        pool, conn, _ = mock_db
        store = PostgresEventStore(pool)

        with store.transaction():
            pass

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_database_error_becomes_persistence_error(self, mock_db):
        pool, conn, cursor = mock_db
        cursor.execute.side_effect = psycopg2.IntegrityError("duplicate key")
        store = PostgresEventStore(pool)

        with pytest.raises(PersistenceError) as exc_info:
            with store.transaction():
                store.find_or_create_venue("Hall X")

        assert "duplicate key" in exc_info.value.detail
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_other_errors_roll_back_and_propagate(self, mock_db):
        pool, conn, _ = mock_db
        store = PostgresEventStore(pool)

        with pytest.raises(RuntimeError):
            with store.transaction():
                raise RuntimeError("boom")

        conn.rollback.assert_called_once()

    def test_nested_transaction_uses_outer_connection(self, mock_db):
        pool, conn, _ = mock_db
        store = PostgresEventStore(pool)

        with store.transaction():
            with store.transaction():
                pass

        pool.getconn.assert_called_once()
        conn.commit.assert_called_once()

    def test_write_outside_transaction(self, mock_db):
        store = PostgresEventStore(mock_db[0])
        with pytest.raises(PersistenceError, match="No active transaction"):
            store.find_event_id("abc")


class TestQueries:
    """Tests for the SQL issued by the store."""

    def test_find_or_create_returns_inserted_id(self, mock_db):
        pool, _, cursor = mock_db
        cursor.fetchone.return_value = (7,)
        store = PostgresEventStore(pool)

        with store.transaction():
            assert store.find_or_create_tag("Jazz") == 7

        sql, params = cursor.execute.call_args[0]
        assert "ON CONFLICT (name) DO NOTHING" in sql
        assert params == ("Jazz",)

    def test_find_or_create_falls_back_to_select(self, mock_db):
        pool, _, cursor = mock_db
        cursor.fetchone.side_effect = [None, (3,)]
        store = PostgresEventStore(pool)

        with store.transaction():
            assert store.find_or_create_venue("Hall X") == 3

        assert cursor.execute.call_count == 2
        assert cursor.execute.call_args[0][0].startswith("SELECT id FROM venues")

    def test_find_event_id_missing(self, mock_db):
        pool, _, cursor = mock_db
        cursor.fetchone.return_value = None
        store = PostgresEventStore(pool)

        with store.transaction():
            assert store.find_event_id("abc") is None

    def test_update_missing_event(self, mock_db):
        pool, _, cursor = mock_db
        cursor.rowcount = 0
        store = PostgresEventStore(pool)

        with pytest.raises(PersistenceError, match="not found"):
            with store.transaction():
                store.update_event(
                    1, {"title": "T", "date_start": None, "date_end": None}
                )

    def test_child_upserts_use_natural_keys(self, mock_db):
        pool, _, cursor = mock_db
        store = PostgresEventStore(pool)

        with store.transaction():
            store.upsert_schedule(1, {"date": "2024-05-01"})
            store.upsert_price(1, {"price_tier": "General"})
            store.upsert_image(1, {"image_url": "https://a/1.jpg"})
            store.upsert_event_link(1, "https://a/e", "primary")

        statements = [c[0][0] for c in cursor.execute.call_args_list]
        assert "ON CONFLICT (event_id, date)" in statements[0]
        assert "ON CONFLICT (event_id, price_tier)" in statements[1]
        assert "ON CONFLICT (event_id, image_url)" in statements[2]
        assert "ON CONFLICT (event_id, url)" in statements[3]

    def test_create_schema(self, mock_db, tmp_path):
        pool, conn, cursor = mock_db
        schema = tmp_path / "schema.sql"
        schema.write_text("CREATE TABLE IF NOT EXISTS venues (id SERIAL);", encoding="utf-8")
        store = PostgresEventStore(pool, schema_path=schema)

        store.create_schema()

        conn.cursor.return_value.execute.assert_called_once_with(
            "CREATE TABLE IF NOT EXISTS venues (id SERIAL);"
        )
        conn.commit.assert_called_once()
