"""SQLite database client wrapper with CRUD operations and optimistic versioning."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from src.core.config import settings
from src.core.errors import ConcurrentModificationError, NotFoundError, StorageError


logger = logging.getLogger(__name__)


class DatabaseError(StorageError):
    """Raised when the SQLite store fails or is unreachable."""


class RecordNotFoundError(NotFoundError):
    """Raised when a record id does not exist in a collection."""


FilterValue = str | int | float | bool | None
ConnectionKey = tuple[int, int, str]

_db_connections: dict[ConnectionKey, aiosqlite.Connection] = {}
_connection_locks: dict[ConnectionKey, asyncio.Lock] = {}
_registry_lock = threading.Lock()


def _validate_identifier(name: str) -> None:
    """Validate that a table or column name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", name):
        msg = f"Invalid identifier: {name}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _coerce_id(collection: str, record_id: str) -> int:
    """Convert a string record id to the integer primary key, treating junk ids as missing."""
    try:
        return int(record_id)
    except (TypeError, ValueError) as e:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg) from e


def _encode_value(value: Any) -> Any:
    """Encode a Python value into something SQLite can bind."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict | list | tuple):
        return json.dumps(value)
    return value


def _row_to_record(columns: list[str], row: Iterable[Any]) -> dict[str, Any]:
    """Build a record dict, exposing the integer primary key as a string id."""
    record = dict(zip(columns, row, strict=True))
    if isinstance(record.get("id"), int):
        record["id"] = str(record["id"])
    return record


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _connection_key(db_path: str | None) -> ConnectionKey:
    loop = asyncio.get_running_loop()
    return (threading.get_ident(), id(loop), str(get_db_path(db_path)))


def _build_where(filters: dict[str, FilterValue | list[FilterValue]] | None) -> tuple[str, list[FilterValue]]:
    """Translate keyword filters into a WHERE clause.

    Scalar values compare with ``=`` (``None`` becomes ``IS NULL``); list values become ``IN``.
    """
    if not filters:
        return "", []

    conditions: list[str] = []
    params: list[FilterValue] = []
    for column, value in filters.items():
        _validate_identifier(column)
        if isinstance(value, list):
            if not value:
                conditions.append("0")
                continue
            conditions.append(f"{column} IN ({', '.join('?' for _ in value)})")
            params.extend(value)
        elif value is None:
            conditions.append(f"{column} IS NULL")
        else:
            conditions.append(f"{column} = ?")
            params.append(value)

    return "WHERE " + " AND ".join(conditions), params


def _safe_sort(sort: str) -> str:
    """Only allow ``column [ASC|DESC]``; anything else falls back to id order."""
    if sort:
        if re.match(r"^[A-Za-z_][A-Za-z0-9_]*\s*(ASC|DESC)?$", sort.strip(), re.IGNORECASE):
            return sort.strip()
        logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
    return "id ASC"


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _connection_key(db_path)

    conn = _db_connections.get(cache_key)
    if conn is not None:
        return conn

    path = get_db_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")
    except aiosqlite.Error as e:
        logger.error("sqlite_connect_failed", extra={"db_path": str(path), "error": str(e)})
        msg = f"Failed to open database at {path}: {e}"
        raise DatabaseError(msg) from e

    with _registry_lock:
        existing = _db_connections.get(cache_key)
        if existing is None:
            _db_connections[cache_key] = conn
            _connection_locks[cache_key] = asyncio.Lock()

    if existing is not None:
        await conn.close()
        return existing

    logger.info("Created new SQLite connection", extra={"db_path": str(path), "thread_id": cache_key[0]})
    return conn


def _get_lock(cache_key: ConnectionKey) -> asyncio.Lock:
    return _connection_locks[cache_key]


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _connection_key(db_path)

    with _registry_lock:
        conn = _db_connections.pop(cache_key, None)
        _connection_locks.pop(cache_key, None)

    if conn is None:
        return

    try:
        await conn.close()
        logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})
    except aiosqlite.Error as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e)})


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from src.core import schema

    await schema.init_db(db_path=db_path)


class Transaction:
    """Write operations bound to one open SQLite transaction."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert(self, *, collection: str, data: dict[str, Any]) -> str:
        """Insert a row and return its new id."""
        _validate_identifier(collection)
        for column in data:
            _validate_identifier(column)

        columns_str = ", ".join(data)
        placeholders_str = ", ".join("?" for _ in data)
        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - identifiers are validated
        try:
            cursor = await self._conn.execute(query, [_encode_value(v) for v in data.values()])
        except aiosqlite.Error as e:
            logger.error("insert_failed", extra={"collection": collection, "error": str(e)})
            msg = f"Failed to create record in {collection}: {e}"
            raise DatabaseError(msg) from e
        return str(cursor.lastrowid)

    async def update(
        self,
        *,
        collection: str,
        record_id: str,
        data: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """Update a row; with ``expected_version`` the write only lands if the version still matches."""
        if not data:
            msg = "Empty update payload"
            raise ValueError(msg)

        _validate_identifier(collection)
        for column in data:
            _validate_identifier(column)

        pk = _coerce_id(collection, record_id)
        set_parts = [f"{key} = ?" for key in data]
        values = [_encode_value(v) for v in data.values()]
        where = "id = ?"
        values.append(pk)

        if expected_version is not None:
            set_parts.append("version = version + 1")
            where += " AND version = ?"
            values.append(expected_version)

        query = f"UPDATE {collection} SET {', '.join(set_parts)} WHERE {where}"  # noqa: S608 - identifiers are validated
        try:
            cursor = await self._conn.execute(query, values)
        except aiosqlite.Error as e:
            logger.error("update_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
            msg = f"Failed to update record in {collection}: {e}"
            raise DatabaseError(msg) from e

        if cursor.rowcount == 0:
            if not await self._exists(collection, pk):
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
            msg = f"{collection} record {record_id} changed since version {expected_version}"
            raise ConcurrentModificationError(msg)

    async def delete(self, *, collection: str, record_id: str) -> None:
        """Delete a row by id."""
        _validate_identifier(collection)
        pk = _coerce_id(collection, record_id)
        try:
            cursor = await self._conn.execute(f"DELETE FROM {collection} WHERE id = ?", (pk,))  # noqa: S608 - identifiers are validated
        except aiosqlite.Error as e:
            msg = f"Failed to delete record from {collection}: {e}"
            raise DatabaseError(msg) from e
        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

    async def _exists(self, collection: str, pk: int) -> bool:
        cursor = await self._conn.execute(f"SELECT 1 FROM {collection} WHERE id = ?", (pk,))  # noqa: S608 - identifiers are validated
        return await cursor.fetchone() is not None


@asynccontextmanager
async def transaction(*, db_path: str | None = None) -> AsyncIterator[Transaction]:
    """Run writes as one unit of work: commit on success, roll back on any error.

    The connection lock serializes every statement issued on the shared connection,
    so no other coroutine can observe or interleave with uncommitted rows.
    """
    conn = await get_connection(db_path=db_path)
    lock = _get_lock(_connection_key(db_path))
    async with lock:
        try:
            yield Transaction(conn)
            await conn.commit()
        except BaseException:
            try:
                await conn.rollback()
            except aiosqlite.Error as rollback_error:
                logger.error("rollback_failed", extra={"error": str(rollback_error)})
            raise


async def _fetch(
    query: str,
    params: list[Any] | tuple[Any, ...],
    *,
    many: bool,
) -> list[dict[str, Any]]:
    conn = await get_connection()
    async with _get_lock(_connection_key(None)):
        try:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall() if many else [row for row in [await cursor.fetchone()] if row]
        except aiosqlite.Error as e:
            msg = f"Query failed: {e}"
            raise DatabaseError(msg) from e
        columns = [description[0] for description in cursor.description or ()]
    return [_row_to_record(columns, row) for row in rows]


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    async with transaction() as tx:
        record_id = await tx.insert(collection=collection, data=data)

    logger.info("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    _validate_identifier(collection)
    pk = _coerce_id(collection, record_id)
    rows = await _fetch(f"SELECT * FROM {collection} WHERE id = ?", (pk,), many=False)  # noqa: S608 - identifiers are validated
    if not rows:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)
    return rows[0]


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    async with transaction() as tx:
        await tx.update(collection=collection, record_id=record_id, data=data, expected_version=expected_version)

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    async with transaction() as tx:
        await tx.delete(collection=collection, record_id=record_id)

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    filters: dict[str, FilterValue | list[FilterValue]] | None = None,
    sort: str = "",
    page: int = 1,
    per_page: int = 500,
) -> list[dict[str, Any]]:
    """List records with optional keyword filters, sorting, and pagination."""
    _validate_identifier(collection)
    where_clause, params = _build_where(filters)
    offset = (page - 1) * per_page

    query = f"SELECT * FROM {collection} {where_clause} ORDER BY {_safe_sort(sort)} LIMIT ? OFFSET ?"  # noqa: S608 - identifiers are validated
    records = await _fetch(query, [*params, per_page, offset], many=True)

    logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
    return records


async def get_first_record(
    *,
    collection: str,
    filters: dict[str, FilterValue | list[FilterValue]],
) -> dict[str, Any] | None:
    """Return the first record matching the filters, or None."""
    records = await list_records(collection=collection, filters=filters, per_page=1)
    return records[0] if records else None
