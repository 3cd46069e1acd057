"""SQLite-backed Remote Data Channel for local development and tests."""

import json
import sqlite3
import uuid
from pathlib import Path

import aiosqlite

from ..config import resolve_db_path
from ..errors import RejectedWriteError, TransientChannelError
from ..logging_config import get_logger
from ..models import ChangeEvent, ChangeType, format_timestamp, utcnow
from .base import ChangeHandler, ErrorHandler, Subscription
from .feed import ChangeFeed
from .filters import Filters, Order, normalize_filters, normalize_value

logger = get_logger(__name__)

_SQL_OPERATORS = {
    "eq": "=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

_JSON_COLUMNS = {
    "messages": {"attachments", "metadata"},
}

_BOOL_COLUMNS = {
    "messages": {"has_files"},
    "room_members": {"is_online"},
}

_INTERNAL_TABLES = {"blobs"}


class SQLiteChannel:
    """Remote Data Channel over a local SQLite database (aiosqlite)."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        public_base_url: str = "local://storage",
    ):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._public_base_url = public_base_url.rstrip("/")
        self._conn: aiosqlite.Connection | None = None
        self._columns: dict[str, list[str]] = {}
        self._feed = ChangeFeed()

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def init(self) -> None:
        """Initialize database and create tables."""
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

        cursor = await self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )
        tables = [row[0] for row in await cursor.fetchall()]
        for table in tables:
            cursor = await self._conn.execute(f"PRAGMA table_info({table})")
            self._columns[table] = [row[1] for row in await cursor.fetchall()]

        logger.info("SQLite channel ready at %s", self._db_path)

    async def close(self) -> None:
        """Close database connection and drop all subscriptions."""
        self._feed.clear()
        if self._conn:
            await self._conn.close()
            self._conn = None

    # Reads
    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Point-in-time read."""
        self._check_table(table)
        where, params = self._where(table, filters)

        sql = f"SELECT * FROM {table} {where}"
        if order is not None:
            self._check_columns(table, [order.column])
            sql += f" ORDER BY {order.column} {'ASC' if order.ascending else 'DESC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = await self._fetch(sql, params)
        return [self._decode(table, row) for row in rows]

    # Writes
    async def insert(self, table: str, record: dict) -> dict:
        """Insert a row, assigning id and created_at when missing."""
        self._check_table(table)
        values = self._encode(table, record)
        columns = self._columns[table]
        if "id" in columns and not values.get("id"):
            values["id"] = str(uuid.uuid4())
        if "created_at" in columns and not values.get("created_at"):
            values["created_at"] = format_timestamp(utcnow())
        self._check_columns(table, values)

        names = ", ".join(values)
        placeholders = ", ".join("?" * len(values))
        cursor = await self._write(
            f"INSERT INTO {table} ({names}) VALUES ({placeholders})",
            list(values.values()),
        )
        row = await self._row_by_rowid(table, cursor.lastrowid)

        await self._feed.publish(ChangeEvent(table=table, type=ChangeType.INSERT, new=row))
        return row

    async def upsert(
        self, table: str, record: dict, conflict_keys: tuple[str, ...]
    ) -> None:
        """Insert or update the row identified by conflict_keys."""
        self._check_table(table)
        missing = [k for k in conflict_keys if k not in record]
        if missing:
            raise RejectedWriteError(f"Upsert into {table} missing keys: {missing}")

        values = self._encode(table, record)
        update_columns = [c for c in values if c not in conflict_keys]
        if "created_at" in self._columns[table] and not values.get("created_at"):
            values["created_at"] = format_timestamp(utcnow())
        self._check_columns(table, values)

        names = ", ".join(values)
        placeholders = ", ".join("?" * len(values))
        if update_columns:
            assignments = ", ".join(f"{c} = excluded.{c}" for c in update_columns)
            action = f"DO UPDATE SET {assignments}"
        else:
            action = "DO NOTHING"

        await self._write(
            f"INSERT INTO {table} ({names}) VALUES ({placeholders}) "
            f"ON CONFLICT ({', '.join(conflict_keys)}) {action}",
            list(values.values()),
        )

        rows = await self.query(table, {k: record[k] for k in conflict_keys}, limit=1)
        if rows:
            await self._feed.publish(
                ChangeEvent(table=table, type=ChangeType.UPDATE, new=rows[0])
            )

    async def update(self, table: str, filters: Filters, changes: dict) -> list[dict]:
        """Modify matching rows and publish an UPDATE per row."""
        self._check_table(table)
        if not changes:
            return []
        values = self._encode(table, changes)
        self._check_columns(table, values)

        where, params = self._where(table, filters)
        targets = await self._fetch(f"SELECT rowid FROM {table} {where}", params)
        rowids = [row[0] for row in targets]
        if not rowids:
            return []

        assignments = ", ".join(f"{c} = ?" for c in values)
        marks = ", ".join("?" * len(rowids))
        await self._write(
            f"UPDATE {table} SET {assignments} WHERE rowid IN ({marks})",
            list(values.values()) + rowids,
        )

        updated = [await self._row_by_rowid(table, rowid) for rowid in rowids]
        for row in updated:
            await self._feed.publish(ChangeEvent(table=table, type=ChangeType.UPDATE, new=row))
        return updated

    async def delete(self, table: str, filters: Filters) -> list[dict]:
        """Delete matching rows and publish a DELETE per row."""
        self._check_table(table)
        deleted = await self.query(table, filters)
        if not deleted:
            return []

        where, params = self._where(table, filters)
        await self._write(f"DELETE FROM {table} {where}", params)

        for row in deleted:
            await self._feed.publish(ChangeEvent(table=table, type=ChangeType.DELETE, old=row))
        return deleted

    # Subscriptions
    async def subscribe(
        self,
        table: str,
        filters: Filters | None,
        handler: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        """Subscribe to committed changes on table."""
        self._require_conn()
        self._check_table(table)
        if filters:
            self._check_columns(table, filters)
        return self._feed.subscribe(table, filters, handler, on_error)

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription handle."""
        self._feed.unsubscribe(subscription)

    # Blobs
    async def upload_blob(
        self, bucket: str, path: str, data: bytes, content_type: str | None = None
    ) -> str:
        """Store bytes under bucket/path. Existing paths are not overwritten."""
        await self._write(
            "INSERT INTO blobs (bucket, path, content_type, data, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [bucket, path, content_type, data, format_timestamp(utcnow())],
        )
        return f"{self._public_base_url}/{bucket}/{path}"

    async def remove_blob(self, bucket: str, path: str) -> None:
        """Delete a stored object."""
        await self._write("DELETE FROM blobs WHERE bucket = ? AND path = ?", [bucket, path])

    async def download_blob(self, bucket: str, path: str) -> bytes | None:
        """Read a stored object back (None if absent)."""
        rows = await self._fetch(
            "SELECT data FROM blobs WHERE bucket = ? AND path = ?", [bucket, path]
        )
        return rows[0][0] if rows else None

    # Helpers
    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("SQLiteChannel not initialized")
        return self._conn

    def _check_table(self, table: str) -> None:
        self._require_conn()
        if table not in self._columns or table in _INTERNAL_TABLES:
            raise RejectedWriteError(f"Unknown table: {table}")

    def _check_columns(self, table: str, columns) -> None:
        unknown = [c for c in columns if c not in self._columns[table]]
        if unknown:
            raise RejectedWriteError(f"Unknown columns for {table}: {unknown}")

    def _where(self, table: str, filters: Filters | None) -> tuple[str, list]:
        conditions = normalize_filters(filters)
        self._check_columns(table, [c.column for c in conditions])

        clauses = []
        params: list = []
        for condition in conditions:
            if condition.op == "in":
                if not condition.value:
                    clauses.append("0")
                    continue
                marks = ", ".join("?" * len(condition.value))
                clauses.append(f"{condition.column} IN ({marks})")
                params.extend(condition.value)
            elif condition.value is None and condition.op in ("eq", "neq"):
                negate = " NOT" if condition.op == "neq" else ""
                clauses.append(f"{condition.column} IS{negate} NULL")
            else:
                clauses.append(f"{condition.column} {_SQL_OPERATORS[condition.op]} ?")
                params.append(condition.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _encode(self, table: str, record: dict) -> dict:
        json_columns = _JSON_COLUMNS.get(table, set())
        bool_columns = _BOOL_COLUMNS.get(table, set())
        encoded = {}
        for column, value in record.items():
            if column in json_columns and value is not None:
                encoded[column] = json.dumps(value)
            elif column in bool_columns and value is not None:
                encoded[column] = 1 if value else 0
            else:
                encoded[column] = normalize_value(value)
        return encoded

    def _decode(self, table: str, row: aiosqlite.Row) -> dict:
        json_columns = _JSON_COLUMNS.get(table, set())
        bool_columns = _BOOL_COLUMNS.get(table, set())
        decoded = dict(row)
        for column in json_columns:
            if isinstance(decoded.get(column), str):
                decoded[column] = json.loads(decoded[column])
        for column in bool_columns:
            if decoded.get(column) is not None:
                decoded[column] = bool(decoded[column])
        return decoded

    async def _row_by_rowid(self, table: str, rowid: int) -> dict:
        rows = await self._fetch(f"SELECT * FROM {table} WHERE rowid = ?", [rowid])
        return self._decode(table, rows[0])

    async def _fetch(self, sql: str, params: list) -> list:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            return await cursor.fetchall()
        except sqlite3.OperationalError as e:
            raise TransientChannelError(f"SQLite read failed: {e}") from e

    async def _write(self, sql: str, params: list) -> aiosqlite.Cursor:
        conn = self._require_conn()
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            await conn.rollback()
            raise RejectedWriteError(f"Constraint violation: {e}") from e
        except sqlite3.OperationalError as e:
            await conn.rollback()
            raise TransientChannelError(f"SQLite write failed: {e}") from e
