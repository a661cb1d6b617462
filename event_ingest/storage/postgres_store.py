"""
PostgreSQL event store.

psycopg2 implementation of EventStore. Every write is an
INSERT ... ON CONFLICT on the natural key declared in schema.sql, so
find-or-create of shared rows stays atomic when workers race on a name.

Connections come from a ThreadedConnectionPool; a transaction binds one
connection to the calling thread until it commits or rolls back.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from event_ingest.configs.settings import Settings
from event_ingest.ingestion.errors import PersistenceError
from event_ingest.storage.base_store import EventStore

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class PostgresEventStore(EventStore):
    """Event store backed by PostgreSQL."""

    def __init__(self, pool, schema_path: Path = SCHEMA_PATH) -> None:
        self.pool = pool
        self.schema_path = schema_path
        self._local = threading.local()

    @classmethod
    def from_settings(cls, settings: Settings, max_connections: int = 8) -> "PostgresEventStore":
        pool = ThreadedConnectionPool(1, max_connections, **settings.get_psycopg2_params())
        return cls(pool)

    def create_schema(self) -> None:
        """Apply schema.sql (idempotent: CREATE ... IF NOT EXISTS)."""
        with self.transaction():
            self._cursor().execute(self.schema_path.read_text(encoding="utf-8"))

    def close(self) -> None:
        self.pool.closeall()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["PostgresEventStore"]:
        if getattr(self._local, "conn", None) is not None:
            # nested: the outer block owns commit/rollback
            yield self
            return

        conn = self.pool.getconn()
        self._local.conn = conn
        try:
            yield self
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise PersistenceError(
                "Database rejected the write",
                detail=getattr(e, "pgerror", None) or str(e),
            ) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            self.pool.putconn(conn)

    def _cursor(self):
        conn = getattr(self._local, "conn", None)
        if conn is None:
            raise PersistenceError("No active transaction")
        return conn.cursor()

    def _fetch_id(self, insert_sql: str, select_sql: str, params: tuple) -> int:
        with self._cursor() as cur:
            cur.execute(insert_sql, params)
            res = cur.fetchone()
            if res:
                return res[0]

            # Fallback lookup when the row already existed (DO NOTHING)
            cur.execute(select_sql, params)
            return cur.fetchone()[0]

    # ------------------------------------------------------------------
    # Shared taxonomy rows
    # ------------------------------------------------------------------

    def find_or_create_venue(self, name: str) -> int:
        return self._fetch_id(
            "INSERT INTO venues (name) VALUES (%s) ON CONFLICT (name) DO NOTHING RETURNING id;",
            "SELECT id FROM venues WHERE name = %s LIMIT 1;",
            (name,),
        )

    def find_or_create_category(self, name: str) -> int:
        return self._fetch_id(
            "INSERT INTO categories (name) VALUES (%s) ON CONFLICT (name) DO NOTHING RETURNING id;",
            "SELECT id FROM categories WHERE name = %s LIMIT 1;",
            (name,),
        )

    def find_or_create_tag(self, name: str) -> int:
        return self._fetch_id(
            "INSERT INTO tags (name) VALUES (%s) ON CONFLICT (name) DO NOTHING RETURNING id;",
            "SELECT id FROM tags WHERE name = %s LIMIT 1;",
            (name,),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def find_event_id(self, external_id: str) -> Optional[int]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id FROM events WHERE external_id = %s LIMIT 1;", (external_id,)
            )
            res = cur.fetchone()
            return res[0] if res else None

    def create_event(self, values: Dict[str, Any]) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO events (
                    external_id, title, organization, description,
                    date_start, date_end, venue_id, program, sold_out, free,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
                RETURNING id;
                """,
                (
                    values["external_id"],
                    values["title"],
                    values.get("organization"),
                    values.get("description"),
                    values["date_start"],
                    values["date_end"],
                    values.get("venue_id"),
                    values.get("program"),
                    values.get("sold_out", False),
                    values.get("free", False),
                ),
            )
            return cur.fetchone()[0]

    def update_event(self, event_id: int, values: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE events SET
                    title = %s,
                    organization = %s,
                    description = %s,
                    date_start = %s,
                    date_end = %s,
                    venue_id = %s,
                    program = %s,
                    sold_out = %s,
                    free = %s,
                    updated_at = NOW()
                WHERE id = %s;
                """,
                (
                    values["title"],
                    values.get("organization"),
                    values.get("description"),
                    values["date_start"],
                    values["date_end"],
                    values.get("venue_id"),
                    values.get("program"),
                    values.get("sold_out", False),
                    values.get("free", False),
                    event_id,
                ),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"Event {event_id} not found", values=values)

    # ------------------------------------------------------------------
    # Child collections
    # ------------------------------------------------------------------

    def upsert_schedule(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO schedules (
                    event_id, date, time_start, time_end, special_notes, status
                ) VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (event_id, date) DO UPDATE SET
                    time_start = EXCLUDED.time_start,
                    time_end = EXCLUDED.time_end,
                    special_notes = EXCLUDED.special_notes,
                    status = EXCLUDED.status;
                """,
                (
                    event_id,
                    entry["date"],
                    entry.get("time_start"),
                    entry.get("time_end"),
                    entry.get("special_notes"),
                    entry.get("status", "upcoming"),
                ),
            )

    def upsert_price(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO prices (
                    event_id, price_tier, amount, currency, discount_info
                ) VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (event_id, price_tier) DO UPDATE SET
                    amount = EXCLUDED.amount,
                    currency = EXCLUDED.currency,
                    discount_info = EXCLUDED.discount_info;
                """,
                (
                    event_id,
                    entry["price_tier"],
                    entry.get("amount"),
                    entry.get("currency", "JPY"),
                    entry.get("discount_info"),
                ),
            )

    def upsert_image(self, event_id: int, entry: Dict[str, Any]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO images (event_id, image_url, alt_text, is_featured)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (event_id, image_url) DO UPDATE SET
                    alt_text = EXCLUDED.alt_text,
                    is_featured = EXCLUDED.is_featured;
                """,
                (
                    event_id,
                    entry["image_url"],
                    entry.get("alt_text"),
                    entry.get("is_featured", False),
                ),
            )

    def upsert_event_link(self, event_id: int, url: str, link_type: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO event_links (event_id, url, link_type)
                VALUES (%s, %s, %s)
                ON CONFLICT (event_id, url) DO UPDATE SET
                    link_type = EXCLUDED.link_type;
                """,
                (event_id, url, link_type),
            )

    def attach_category(self, event_id: int, category_id: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO event_categories (event_id, category_id)
                VALUES (%s, %s)
                ON CONFLICT DO NOTHING;
                """,
                (event_id, category_id),
            )

    def attach_tag(self, event_id: int, tag_id: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO event_tags (event_id, tag_id)
                VALUES (%s, %s)
                ON CONFLICT DO NOTHING;
                """,
                (event_id, tag_id),
            )
