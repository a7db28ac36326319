"""SQLite-based document store.

Stores every collection in one ``documents`` table with a JSON body. Plain
string equality clauses are pushed down to SQL through json_extract; the rest
of a filter, sorting and limits are applied with the shared query helpers.

Every write runs inside BEGIN IMMEDIATE, so compare-and-swap upserts and
delete-then-insert replacements are atomic across connections and processes.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from cadence.core.errors import StorageError
from cadence.core.logging import get_logger
from cadence.storage.base import DocumentStore
from cadence.storage.query import (
    Document,
    Filter,
    SortSpec,
    equality_fields,
    matches,
    sort_documents,
)
from cadence.utils.time import utc_now

_logger = get_logger("storage.sqlite")

# Current schema version for migration support
SCHEMA_VERSION = 1

_DATE_KEY = "$date"


def _encode_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {_DATE_KEY: obj.isoformat()}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _decode_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATE_KEY in obj:
        return datetime.fromisoformat(obj[_DATE_KEY])
    return obj


def _dumps(document: Document) -> str:
    return json.dumps(document, default=_encode_default)


def _loads(body: str) -> Document:
    loaded: Document = json.loads(body, object_hook=_decode_hook)
    return loaded


class SQLiteDocumentStore(DocumentStore):
    """SQLite document store backed by aiosqlite."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file (created on first use).
        """
        self.db_path = Path(db_path)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Autocommit connection; transactions are opened explicitly."""
        try:
            async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
                await db.execute("PRAGMA busy_timeout=5000")
                yield db
        except (aiosqlite.Error, OSError) as exc:
            _logger.error("sqlite_operation_failed", db_path=str(self.db_path), error=str(exc))
            raise StorageError(f"SQLite operation failed: {exc}") from exc

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._ensure_initialized()
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        async with self._init_lock:
            # Another coroutine may have finished while we waited
            if self._initialized:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"Cannot create database directory: {exc}") from exc
            async with self._connect() as db:
                await self._run_migrations(db)
            self._initialized = True

    async def _get_schema_version(self, db: aiosqlite.Connection) -> int:
        try:
            cursor = await db.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row[0] if row else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist yet
            return 0

    async def _run_migrations(self, db: aiosqlite.Connection) -> None:
        current_version = await self._get_schema_version(db)
        if current_version < 1:
            await self._migrate_v1(db)
            _logger.info("schema_migrated", from_version=current_version, to_version=1)

    async def _migrate_v1(self, db: aiosqlite.Connection) -> None:
        """Initial schema: one table of JSON documents per collection."""
        await db.execute("BEGIN IMMEDIATE")
        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                doc_id INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                body TEXT NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)"
        )
        await db.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (1, utc_now().isoformat()),
        )
        await db.execute("COMMIT")

    async def _select(
        self,
        db: aiosqlite.Connection,
        collection: str,
        filter: Filter | None,  # noqa: A002
    ) -> list[tuple[int, Document]]:
        """Rows of a collection matching filter, in insertion order."""
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for key, value in equality_fields(filter).items():
            clauses.append("json_extract(body, ?) = ?")
            params.extend([f'$."{key}"', value])

        cursor = await db.execute(
            f"SELECT doc_id, body FROM documents WHERE {' AND '.join(clauses)} "
            "ORDER BY doc_id",
            params,
        )
        rows = await cursor.fetchall()
        selected = []
        for doc_id, body in rows:
            document = _loads(body)
            if matches(document, filter):
                selected.append((doc_id, document))
        return selected

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,  # noqa: A002
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        await self._ensure_initialized()
        async with self._connect() as db:
            rows = await self._select(db, collection, filter)
        found = sort_documents((doc for _, doc in rows), sort)
        if limit is not None:
            found = found[:limit]
        return found

    async def insert_one(self, collection: str, document: Document) -> None:
        await self.insert_many(collection, [document])

    async def insert_many(self, collection: str, documents: list[Document]) -> int:
        if not documents:
            return 0
        async with self._transaction() as db:
            await db.executemany(
                "INSERT INTO documents (collection, body) VALUES (?, ?)",
                [(collection, _dumps(doc)) for doc in documents],
            )
        return len(documents)

    async def upsert(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        document: Document,
        *,
        expected: Filter | None = None,
        if_absent: bool = False,
    ) -> bool:
        async with self._transaction() as db:
            rows = await self._select(db, collection, filter)
            if rows:
                doc_id, existing = rows[0]
                if if_absent:
                    return False
                if expected is not None and not matches(existing, expected):
                    _logger.debug("upsert_conflict", collection=collection)
                    return False
                await db.execute(
                    "UPDATE documents SET body = ? WHERE doc_id = ?",
                    (_dumps(document), doc_id),
                )
                return True

            if expected is not None:
                return False
            await db.execute(
                "INSERT INTO documents (collection, body) VALUES (?, ?)",
                (collection, _dumps(document)),
            )
            return True

    async def update_one(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        fields: Document,
    ) -> bool:
        async with self._transaction() as db:
            rows = await self._select(db, collection, filter)
            if not rows:
                return False
            doc_id, existing = rows[0]
            existing.update(fields)
            await db.execute(
                "UPDATE documents SET body = ? WHERE doc_id = ?",
                (_dumps(existing), doc_id),
            )
            return True

    async def delete_many(self, collection: str, filter: Filter) -> int:  # noqa: A002
        async with self._transaction() as db:
            return await self._delete_matching(db, collection, filter)

    async def _delete_matching(
        self,
        db: aiosqlite.Connection,
        collection: str,
        filter: Filter,  # noqa: A002
    ) -> int:
        rows = await self._select(db, collection, filter)
        await db.executemany(
            "DELETE FROM documents WHERE doc_id = ?",
            [(doc_id,) for doc_id, _ in rows],
        )
        return len(rows)

    async def replace_many(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        documents: list[Document],
    ) -> int:
        async with self._transaction() as db:
            removed = await self._delete_matching(db, collection, filter)
            await db.executemany(
                "INSERT INTO documents (collection, body) VALUES (?, ?)",
                [(collection, _dumps(doc)) for doc in documents],
            )
        _logger.debug(
            "documents_replaced",
            collection=collection,
            removed=removed,
            inserted=len(documents),
        )
        return len(documents)
