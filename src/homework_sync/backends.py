"""Storage backends behind the store gateway.

Every backend exposes the same five async primitives over flat records
(dicts of column -> scalar).  ``MemoryBackend`` keeps its tables on the
instance, ``SqliteBackend`` persists to a SQLite file, and ``FlakyBackend``
wraps either one with the latency and failure profile of the production
network.
"""
import asyncio
import copy
import logging
import random
import re
from typing import Iterable

from homework_sync.db import TABLES, UNIQUE_KEYS, get_connection, init_db

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class DuplicateKey(Exception):
    """An insert collided with an existing unique key."""


class StoreBackend:
    """Interface shared by all backends."""

    async def fetch_one(self, table: str, filters: dict) -> dict | None:
        raise NotImplementedError

    async def fetch_all(self, table: str, filters: dict, order_by: str | None = None) -> list[dict]:
        raise NotImplementedError

    async def insert(self, table: str, record: dict) -> dict:
        raise NotImplementedError

    async def update(
        self, table: str, filters: dict, patch: dict, monotonic_field: str | None = None
    ) -> bool:
        raise NotImplementedError

    async def upsert(
        self,
        table: str,
        record: dict,
        conflict_key: tuple[str, ...],
        ignore_duplicates: bool = False,
        version_field: str | None = None,
    ) -> bool:
        raise NotImplementedError


def _check_names(table: str, columns: Iterable[str]) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table!r}")
    for column in columns:
        if not _IDENTIFIER.match(column):
            raise ValueError(f"Invalid column name: {column!r}")


def _matches(row: dict, filters: dict) -> bool:
    return all(row.get(k) == v for k, v in filters.items())


class MemoryBackend(StoreBackend):
    """Tables held in memory by this instance; enforces the schema's unique keys."""

    def __init__(self) -> None:
        self._tables: dict[str, list[dict]] = {table: [] for table in TABLES}
        self._next_id: dict[str, int] = {table: 1 for table in TABLES}

    def rows(self, table: str) -> list[dict]:
        """Snapshot of a table, for inspection in tests and tools."""
        return copy.deepcopy(self._tables[table])

    def _find(self, table: str, filters: dict) -> list[dict]:
        return [row for row in self._tables[table] if _matches(row, filters)]

    def _conflicting(self, table: str, record: dict, key: tuple[str, ...]) -> dict | None:
        if not all(k in record for k in key):
            return None
        found = self._find(table, {k: record[k] for k in key})
        return found[0] if found else None

    def _insert(self, table: str, record: dict) -> dict:
        row = dict(record)
        if row.get("id") is None:
            row["id"] = self._next_id[table]
            self._next_id[table] += 1
        for key in UNIQUE_KEYS[table]:
            if self._conflicting(table, row, key) is not None:
                raise DuplicateKey(f"{table}: duplicate value for {key}")
        self._tables[table].append(row)
        return copy.deepcopy(row)

    async def fetch_one(self, table, filters):
        _check_names(table, filters)
        found = self._find(table, filters)
        return copy.deepcopy(found[0]) if found else None

    async def fetch_all(self, table, filters, order_by=None):
        _check_names(table, filters)
        found = copy.deepcopy(self._find(table, filters))
        if order_by:
            found.sort(key=lambda row: row.get(order_by))
        return found

    async def insert(self, table, record):
        _check_names(table, record)
        return self._insert(table, record)

    async def update(self, table, filters, patch, monotonic_field=None):
        _check_names(table, list(filters) + list(patch))
        found = self._find(table, filters)
        if monotonic_field:
            found = [row for row in found if (row.get(monotonic_field) or 0) < patch[monotonic_field]]
        for row in found:
            row.update(patch)
        return bool(found)

    async def upsert(self, table, record, conflict_key, ignore_duplicates=False, version_field=None):
        _check_names(table, list(record) + list(conflict_key))
        existing = self._conflicting(table, record, tuple(conflict_key))
        if existing is None:
            self._insert(table, record)
            return True
        if ignore_duplicates:
            return False
        if version_field and record.get(version_field, 0) < existing.get(version_field, 0):
            return False
        existing.update({k: v for k, v in record.items() if k != "id"})
        return True


class SqliteBackend(StoreBackend):
    """Durable backend; each call opens its own connection in a worker thread."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        init_db(db_path)

    @staticmethod
    def _where(filters: dict) -> tuple[str, list]:
        if not filters:
            return "", []
        clause = " AND ".join(f"{column} = ?" for column in filters)
        return f" WHERE {clause}", list(filters.values())

    def _fetch(self, table, filters, order_by=None, limit=None) -> list[dict]:
        _check_names(table, list(filters) + ([order_by] if order_by else []))
        where, params = self._where(filters)
        sql = f"SELECT * FROM {table}{where}"
        if order_by:
            sql += f" ORDER BY {order_by}"
        if limit:
            sql += f" LIMIT {int(limit)}"
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def _insert(self, table, record) -> dict:
        _check_names(table, record)
        columns = list(record)
        placeholders = ", ".join("?" for _ in columns)
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                [record[c] for c in columns],
            )
            row = conn.execute(f"SELECT * FROM {table} WHERE rowid = ?", (cur.lastrowid,)).fetchone()
            conn.commit()
        finally:
            conn.close()
        return dict(row)

    def _update(self, table, filters, patch, monotonic_field=None) -> bool:
        _check_names(table, list(filters) + list(patch))
        assignments = ", ".join(f"{column} = ?" for column in patch)
        where, params = self._where(filters)
        if monotonic_field:
            where += " AND " if where else " WHERE "
            where += f"{monotonic_field} < ?"
            params.append(patch[monotonic_field])
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(f"UPDATE {table} SET {assignments}{where}", list(patch.values()) + params)
            changed = cur.rowcount
            conn.commit()
        finally:
            conn.close()
        return changed > 0

    def _upsert(self, table, record, conflict_key, ignore_duplicates, version_field) -> bool:
        _check_names(table, list(record) + list(conflict_key) + ([version_field] if version_field else []))
        columns = list(record)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT({', '.join(conflict_key)}) "
        )
        updates = [c for c in columns if c not in conflict_key and c != "id"]
        if ignore_duplicates or not updates:
            sql += "DO NOTHING"
        else:
            sql += "DO UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in updates)
            if version_field:
                sql += f" WHERE excluded.{version_field} >= {table}.{version_field}"
        conn = get_connection(self.db_path)
        try:
            cur = conn.execute(sql, [record[c] for c in columns])
            changed = cur.rowcount
            conn.commit()
        finally:
            conn.close()
        return changed > 0

    async def fetch_one(self, table, filters):
        rows = await asyncio.to_thread(self._fetch, table, filters, None, 1)
        return rows[0] if rows else None

    async def fetch_all(self, table, filters, order_by=None):
        return await asyncio.to_thread(self._fetch, table, filters, order_by)

    async def insert(self, table, record):
        return await asyncio.to_thread(self._insert, table, record)

    async def update(self, table, filters, patch, monotonic_field=None):
        return await asyncio.to_thread(self._update, table, filters, patch, monotonic_field)

    async def upsert(self, table, record, conflict_key, ignore_duplicates=False, version_field=None):
        return await asyncio.to_thread(
            self._upsert, table, record, tuple(conflict_key), ignore_duplicates, version_field
        )


class FlakyBackend(StoreBackend):
    """Wraps a backend with random latency and simulated network failures.

    ``lost_ack_rate`` is the share of failures raised *after* the inner call
    went through, i.e. the write landed but the caller never heard back.
    """

    def __init__(
        self,
        inner: StoreBackend,
        min_latency: float = 0.5,
        max_latency: float = 3.0,
        failure_rate: float = 0.1,
        lost_ack_rate: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        self.inner = inner
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.failure_rate = failure_rate
        self.lost_ack_rate = lost_ack_rate
        self.rng = rng or random.Random()

    async def _call(self, op: str, *args):
        await asyncio.sleep(self.rng.uniform(self.min_latency, self.max_latency))
        if self.rng.random() < self.failure_rate:
            if self.rng.random() < self.lost_ack_rate:
                await getattr(self.inner, op)(*args)
            logger.debug("Simulated failure on %s%r", op, args[:1])
            raise ConnectionError("Network timeout - simulated failure")
        return await getattr(self.inner, op)(*args)

    async def fetch_one(self, table, filters):
        return await self._call("fetch_one", table, filters)

    async def fetch_all(self, table, filters, order_by=None):
        return await self._call("fetch_all", table, filters, order_by)

    async def insert(self, table, record):
        return await self._call("insert", table, record)

    async def update(self, table, filters, patch, monotonic_field=None):
        return await self._call("update", table, filters, patch, monotonic_field)

    async def upsert(self, table, record, conflict_key, ignore_duplicates=False, version_field=None):
        return await self._call("upsert", table, record, conflict_key, ignore_duplicates, version_field)
