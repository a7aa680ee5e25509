from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..exceptions import ConstraintViolationError, StorageUnavailableError
from ..logger import get_logger
from .base import CollectionSpec, Document

T = TypeVar("T")

MEMORY = ":memory:"

logger = get_logger(__name__)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SqliteBackend:
    """SQLite engine for the local cache.

    Each collection is a table holding the JSON document plus one column per
    key or indexed field. Blocking calls run on a worker thread; an asyncio
    lock keeps them in the order callers issued them.
    """

    def __init__(self, path: str | Path = MEMORY) -> None:
        self.path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._collections: dict[str, CollectionSpec] = {}
        self._lock = asyncio.Lock()

    async def open(self, collections: list[CollectionSpec]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._open_sync, collections)

    async def close(self) -> None:
        async with self._lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await asyncio.to_thread(conn.close)

    async def get(self, collection: str, key: str) -> Document | None:
        spec = self._spec(collection)
        return await self._run(self._fetch_one, spec, spec.key_field, key)

    async def get_by_secondary_key(self, collection: str, index: str, value: str) -> Document | None:
        spec = self._spec(collection)
        return await self._run(self._fetch_one, spec, spec.index_field(index), value)

    async def put(self, collection: str, document: Document) -> None:
        await self.put_many(collection, [document])

    async def put_many(self, collection: str, documents: list[Document]) -> None:
        spec = self._spec(collection)
        await self._run(self._upsert_many, spec, documents)

    async def patch(self, collection: str, key: str, changes: Document) -> bool:
        """Merge ``changes`` into a stored document in one transaction; False when it is absent."""
        spec = self._spec(collection)
        return await self._run(self._patch, spec, key, changes)

    async def delete(self, collection: str, key: str) -> None:
        spec = self._spec(collection)
        await self._run(self._delete, spec, key)

    async def scan(self, collection: str) -> list[Document]:
        spec = self._spec(collection)
        return await self._run(self._scan, spec)

    def _spec(self, collection: str) -> CollectionSpec:
        spec = self._collections.get(collection)
        if spec is None:
            raise StorageUnavailableError(f"Unknown or unopened collection {collection!r}")
        return spec

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            if self._conn is None:
                raise StorageUnavailableError("Local cache is not open")
            return await asyncio.to_thread(self._guarded, fn, *args)

    def _guarded(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolationError(f"Uniqueness constraint failed: {exc}") from exc
        except (sqlite3.Error, OSError) as exc:
            logger.error("Local cache operation %s failed: %s", fn.__name__, exc)
            raise StorageUnavailableError(f"Local cache unavailable: {exc}") from exc

    def _open_sync(self, collections: list[CollectionSpec]) -> None:
        if self._conn is not None:
            return
        try:
            if self.path != MEMORY:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            with conn:
                for spec in collections:
                    self._create_collection(conn, spec)
        except (sqlite3.Error, OSError) as exc:
            raise StorageUnavailableError(f"Cannot open local cache at {self.path}: {exc}") from exc
        self._conn = conn
        self._collections = {spec.name: spec for spec in collections}

    @staticmethod
    def _create_collection(conn: sqlite3.Connection, spec: CollectionSpec) -> None:
        table = _quote(spec.name)
        columns = [f"{_quote(spec.key_field)} TEXT PRIMARY KEY"]
        columns += [f"{_quote(field)} TEXT" for field in spec.unique_indexes.values()]
        columns.append("doc TEXT NOT NULL")
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(columns)})")
        for index, field in spec.unique_indexes.items():
            conn.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {_quote(f'{spec.name}_{index}')} "
                f"ON {table} ({_quote(field)})"
            )

    def _fetch_one(self, spec: CollectionSpec, column: str, value: str) -> Document | None:
        assert self._conn is not None
        row = self._conn.execute(
            f"SELECT doc FROM {_quote(spec.name)} WHERE {_quote(column)} = ?",
            (value,),
        ).fetchone()
        return json.loads(row[0]) if row else None

    def _upsert_many(self, spec: CollectionSpec, documents: list[Document]) -> None:
        assert self._conn is not None
        if not documents:
            return
        fields = [spec.key_field, *spec.unique_indexes.values()]
        column_sql = ", ".join([*(_quote(f) for f in fields), "doc"])
        placeholders = ", ".join("?" for _ in range(len(fields) + 1))
        updates = ", ".join(f"{_quote(f)} = excluded.{_quote(f)}" for f in [*fields[1:], "doc"])
        sql = (
            f"INSERT INTO {_quote(spec.name)} ({column_sql}) VALUES ({placeholders}) "
            f"ON CONFLICT({_quote(spec.key_field)}) DO UPDATE SET {updates}"
        )
        rows = [
            (*(document.get(f) for f in fields), json.dumps(document, default=str))
            for document in documents
        ]
        # One transaction: either every row commits or none does.
        with self._conn:
            self._conn.executemany(sql, rows)

    def _patch(self, spec: CollectionSpec, key: str, changes: Document) -> bool:
        assert self._conn is not None
        table = _quote(spec.name)
        key_column = _quote(spec.key_field)
        index_fields = list(spec.unique_indexes.values())
        with self._conn:
            self._conn.execute("BEGIN IMMEDIATE")
            row = self._conn.execute(f"SELECT doc FROM {table} WHERE {key_column} = ?", (key,)).fetchone()
            if row is None:
                return False
            document = {**json.loads(row[0]), **changes}
            assignments = ", ".join([*(f"{_quote(f)} = ?" for f in index_fields), "doc = ?"])
            self._conn.execute(
                f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
                (*(document.get(f) for f in index_fields), json.dumps(document, default=str), key),
            )
        return True

    def _delete(self, spec: CollectionSpec, key: str) -> None:
        assert self._conn is not None
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {_quote(spec.name)} WHERE {_quote(spec.key_field)} = ?",
                (key,),
            )

    def _scan(self, spec: CollectionSpec) -> list[Document]:
        assert self._conn is not None
        rows = self._conn.execute(f"SELECT doc FROM {_quote(spec.name)}").fetchall()
        return [json.loads(row[0]) for row in rows]
