"""PostgreSQL persistence for viewing passes, view records and listings."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional
from uuid import uuid4

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import sql
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from .exceptions import DuplicateViewRecordError, LedgerStoreError
from .models import ItemType, Listing, UsageHistoryEntry, ViewingPass, ViewRecord

try:  # pragma: no cover - resolve connection helper when imported from FastAPI app
    from backend.app_context import get_conn
except ModuleNotFoundError as exc:  # pragma: no cover
    if exc.name != "backend":
        raise
    from ...app_context import get_conn  # type: ignore[no-redef]


_LISTING_TABLES = {
    ItemType.WAREHOUSE: "warehouses",
    ItemType.CUSTOMER: "customers",
}


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_pass(row: dict) -> ViewingPass:
    history = row.get("used_history") or []
    return ViewingPass(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        remaining_count=int(row["remaining_count"]),
        total_count=int(row.get("total_count") or 0),
        expires_at=row.get("expires_at"),
        used_history=tuple(UsageHistoryEntry.model_validate(item) for item in history),
        version=int(row.get("version") or 0),
        package_type=row.get("package_type"),
        purchased_at=row.get("purchase_date"),
        extended_at=row.get("extended_at"),
    )


def _row_to_view_record(row: dict) -> ViewRecord:
    return ViewRecord(
        user_id=str(row["user_id"]),
        item_id=str(row["item_id"]),
        item_type=ItemType(row["item_type"]),
        viewed_at=row["viewed_at"],
    )


def _row_to_listing(item_type: ItemType, row: dict) -> Listing:
    owner_id = row.get("owner_id")
    return Listing(
        item_type=item_type,
        id=str(row["id"]),
        owner_id=str(owner_id) if owner_id is not None else None,
        company_name=row.get("company_name"),
        location=row.get("location"),
        city=row.get("city"),
        dong=row.get("dong"),
    )


class _PostgresRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        try:
            with managed_connection(self._conn) as (connection, _managed):
                cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
                try:
                    yield cursor
                finally:
                    cursor.close()
        except psycopg2.errors.UniqueViolation as exc:
            raise DuplicateViewRecordError(str(exc)) from exc
        except psycopg2.Error as exc:
            raise LedgerStoreError(str(exc)) from exc


class PostgresLedgerStore(_PostgresRepository):
    """Ledger store backed by the ``viewing_passes`` and ``views`` tables.

    Every method runs in its own transaction; the consumption protocol does
    not rely on multi-row atomicity.
    """

    def get_pass(self, user_id: str) -> Optional[ViewingPass]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM viewing_passes
                WHERE user_id = %s
                LIMIT 1
                """,
                (user_id,),
            )
            row = cursor.fetchone()
            return _row_to_pass(row) if row else None

    def get_pass_by_id(self, pass_id: str) -> Optional[ViewingPass]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM viewing_passes
                WHERE id = %s
                LIMIT 1
                """,
                (pass_id,),
            )
            row = cursor.fetchone()
            return _row_to_pass(row) if row else None

    def has_view_record(self, user_id: str, item_id: str, item_type: ItemType) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT 1
                FROM views
                WHERE user_id = %s AND item_id = %s AND item_type = %s
                LIMIT 1
                """,
                (user_id, item_id, item_type.value),
            )
            return cursor.fetchone() is not None

    def insert_view_record(self, record: ViewRecord) -> ViewRecord:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO views (user_id, item_id, item_type, viewed_at)
                VALUES (%s, %s, %s, %s)
                RETURNING user_id, item_id, item_type, viewed_at
                """,
                (record.user_id, record.item_id, record.item_type.value, record.viewed_at),
            )
            row = cursor.fetchone()
            if not row:
                raise LedgerStoreError("Failed to persist view record")
            return _row_to_view_record(row)

    def charge_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        entry: UsageHistoryEntry,
    ) -> Optional[ViewingPass]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE viewing_passes
                SET remaining_count = remaining_count - 1,
                    used_history = COALESCE(used_history, '[]'::jsonb) || %s::jsonb,
                    version = version + 1,
                    updated_at = NOW()
                WHERE id = %s AND version = %s AND remaining_count > 0
                RETURNING *
                """,
                (psycopg2.extras.Json([entry.to_document()]), pass_id, expected_version),
            )
            row = cursor.fetchone()
            return _row_to_pass(row) if row else None

    def upsert_pass(
        self,
        user_id: str,
        *,
        count: int,
        expires_at: datetime,
        package_type: Optional[str],
        purchased_at: datetime,
    ) -> ViewingPass:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO viewing_passes (
                    id,
                    user_id,
                    remaining_count,
                    total_count,
                    expires_at,
                    package_type,
                    purchase_date
                )
                VALUES (%(id)s, %(user_id)s, %(count)s, %(count)s, %(expires_at)s,
                        %(package_type)s, %(purchased_at)s)
                ON CONFLICT (user_id) DO UPDATE SET
                    remaining_count = EXCLUDED.remaining_count,
                    total_count = EXCLUDED.total_count,
                    expires_at = EXCLUDED.expires_at,
                    package_type = EXCLUDED.package_type,
                    purchase_date = EXCLUDED.purchase_date,
                    version = viewing_passes.version + 1,
                    updated_at = NOW()
                RETURNING *
                """,
                {
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "count": count,
                    "expires_at": expires_at,
                    "package_type": package_type,
                    "purchased_at": purchased_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise LedgerStoreError("Failed to persist viewing pass")
            return _row_to_pass(row)

    def extend_pass(
        self,
        pass_id: str,
        *,
        expected_version: int,
        expires_at: datetime,
        extended_at: datetime,
    ) -> Optional[ViewingPass]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE viewing_passes
                SET expires_at = %s,
                    extended_at = %s,
                    version = version + 1,
                    updated_at = NOW()
                WHERE id = %s AND version = %s
                RETURNING *
                """,
                (expires_at, extended_at, pass_id, expected_version),
            )
            row = cursor.fetchone()
            return _row_to_pass(row) if row else None

    def list_view_records(self, user_id: str, *, limit: Optional[int] = None) -> List[ViewRecord]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT user_id, item_id, item_type, viewed_at
                FROM views
                WHERE user_id = %s
                ORDER BY viewed_at DESC
                LIMIT %s
                """,
                (user_id, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_view_record(row) for row in rows]

    def count_view_records(self, user_id: str) -> int:
        with self._cursor() as cursor:
            cursor.execute("SELECT COUNT(*) AS total FROM views WHERE user_id = %s", (user_id,))
            row = cursor.fetchone()
            return int(row["total"]) if row else 0


class PostgresListingDirectory(_PostgresRepository):
    """Read-only lookup of warehouse and customer listings."""

    def get_listing(self, item_type: ItemType, item_id: str) -> Optional[Listing]:
        query = sql.SQL(
            """
            SELECT id, owner_id, company_name, location, city, dong
            FROM {table}
            WHERE id = %s
            LIMIT 1
            """
        ).format(table=sql.Identifier(_LISTING_TABLES[item_type]))
        with self._cursor() as cursor:
            cursor.execute(query, (item_id,))
            row = cursor.fetchone()
            return _row_to_listing(item_type, row) if row else None


__all__ = ["PostgresLedgerStore", "PostgresListingDirectory", "managed_connection"]
