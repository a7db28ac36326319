"""Tests for the document store backends and shared query helpers.

Every behavioural test runs against both the in-memory and the SQLite store.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cadence.core.config import StorageConfig
from cadence.core.errors import StorageError
from cadence.storage import create_document_store
from cadence.storage.base import DocumentStore
from cadence.storage.memory import InMemoryDocumentStore
from cadence.storage.query import equality_fields, matches, sort_documents
from cadence.storage.sqlite import SQLiteDocumentStore

T0 = datetime(2025, 6, 2, 9, 0, tzinfo=UTC)


@pytest.fixture(params=["memory", "sqlite"])
def doc_store(request: pytest.FixtureRequest, tmp_path: Path) -> DocumentStore:
    """Each backend in turn."""
    if request.param == "memory":
        return InMemoryDocumentStore()
    return SQLiteDocumentStore(tmp_path / "docs.db")


def _row(n: int, **extra) -> dict:
    return {"user_id": f"u{n % 2}", "n": n, "timestamp": T0 + timedelta(hours=n), **extra}


# ─── Query helpers ─────────────────────────────────────────────────────


class TestMatches:
    """Tests for matches()."""

    def test_empty_filter_matches_everything(self) -> None:
        assert matches({"a": 1}, None)
        assert matches({"a": 1}, {})

    def test_equality_and_missing(self) -> None:
        assert matches({"a": 1}, {"a": 1})
        assert not matches({"a": 1}, {"a": 2})
        assert matches({"a": 1}, {"b": None})

    def test_range_operators(self) -> None:
        doc = {"t": T0}
        assert matches(doc, {"t": {"$gte": T0, "$lte": T0}})
        assert not matches(doc, {"t": {"$gt": T0}})
        assert not matches(doc, {"t": {"$lt": T0}})
        assert not matches({}, {"t": {"$gte": T0}})

    def test_exists_treats_none_as_absent(self) -> None:
        assert matches({"x": 0}, {"x": {"$exists": True}})
        assert not matches({"x": None}, {"x": {"$exists": True}})
        assert matches({}, {"x": {"$exists": False}})

    def test_in_and_ne(self) -> None:
        assert matches({"c": "work"}, {"c": {"$in": ["work", "home"]}})
        assert not matches({}, {"c": {"$in": ["work"]}})
        assert matches({"c": "work"}, {"c": {"$ne": "home"}})

    def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError, match=r"\$regex"):
            matches({"c": "x"}, {"c": {"$regex": "x"}})

    def test_incomparable_values_do_not_match(self) -> None:
        assert not matches({"t": "yesterday"}, {"t": {"$gte": T0}})


class TestSortAndEquality:
    """Tests for sort_documents() and equality_fields()."""

    def test_multi_key_sort_with_missing_values(self) -> None:
        docs = [{"a": 1, "b": 2}, {"a": 1, "b": 1}, {"a": 0}, {"b": 5}]
        ordered = sort_documents(docs, [("a", 1), ("b", -1)])
        assert ordered == [{"b": 5}, {"a": 0}, {"a": 1, "b": 2}, {"a": 1, "b": 1}]

    def test_no_sort_keeps_order(self) -> None:
        docs = [{"a": 2}, {"a": 1}]
        assert sort_documents(docs, None) == docs

    def test_equality_fields_only_plain_strings(self) -> None:
        fields = equality_fields({"user_id": "u1", "n": 3, "t": {"$gte": T0}})
        assert fields == {"user_id": "u1"}


# ─── Backends ──────────────────────────────────────────────────────────


class TestDocumentStoreBackends:
    """Shared behaviour of every DocumentStore."""

    @pytest.mark.asyncio
    async def test_insert_and_find_with_filter_sort_limit(self, doc_store: DocumentStore) -> None:
        assert await doc_store.insert_many("rows", [_row(n) for n in range(6)]) == 6

        found = await doc_store.find(
            "rows",
            {"user_id": "u0", "timestamp": {"$gte": T0 + timedelta(hours=1)}},
            sort=[("n", -1)],
            limit=2,
        )
        assert [d["n"] for d in found] == [4, 2]

    @pytest.mark.asyncio
    async def test_datetimes_round_trip(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_one("rows", {"user_id": "u", "at": T0, "nested": {"k": 1}})
        found = await doc_store.find_one("rows", {"user_id": "u"})
        assert found is not None
        assert found["at"] == T0
        assert found["at"].tzinfo is not None
        assert found["nested"] == {"k": 1}

    @pytest.mark.asyncio
    async def test_find_one_missing(self, doc_store: DocumentStore) -> None:
        assert await doc_store.find_one("rows", {"user_id": "nobody"}) is None
        assert await doc_store.find("empty") == []

    @pytest.mark.asyncio
    async def test_exists_filter(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_many(
            "rows", [_row(1, p=10.0), _row(2, p=None), _row(3)]
        )
        found = await doc_store.find("rows", {"p": {"$exists": True}})
        assert [d["n"] for d in found] == [1]

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_replaces(self, doc_store: DocumentStore) -> None:
        assert await doc_store.upsert("w", {"user_id": "u"}, {"user_id": "u", "v": 1})
        assert await doc_store.upsert("w", {"user_id": "u"}, {"user_id": "u", "v": 2})

        found = await doc_store.find("w")
        assert found == [{"user_id": "u", "v": 2}]

    @pytest.mark.asyncio
    async def test_upsert_compare_and_swap(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_one("w", {"user_id": "u", "stamp": T0, "v": 1})

        stale = await doc_store.upsert(
            "w", {"user_id": "u"}, {"user_id": "u", "stamp": T0, "v": 99},
            expected={"stamp": T0 - timedelta(seconds=1)},
        )
        assert stale is False

        fresh = await doc_store.upsert(
            "w", {"user_id": "u"}, {"user_id": "u", "stamp": T0 + timedelta(seconds=1), "v": 2},
            expected={"stamp": T0},
        )
        assert fresh is True
        assert (await doc_store.find_one("w", {"user_id": "u"}))["v"] == 2

    @pytest.mark.asyncio
    async def test_upsert_expected_without_document_fails(self, doc_store: DocumentStore) -> None:
        written = await doc_store.upsert(
            "w", {"user_id": "u"}, {"user_id": "u"}, expected={"stamp": T0}
        )
        assert written is False
        assert await doc_store.find("w") == []

    @pytest.mark.asyncio
    async def test_upsert_if_absent(self, doc_store: DocumentStore) -> None:
        assert await doc_store.upsert("w", {"user_id": "u"}, {"user_id": "u", "v": 1}, if_absent=True)
        assert not await doc_store.upsert(
            "w", {"user_id": "u"}, {"user_id": "u", "v": 2}, if_absent=True
        )
        assert (await doc_store.find_one("w"))["v"] == 1

    @pytest.mark.asyncio
    async def test_update_one(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_one("e", {"id": "x", "is_active": True, "name": "n"})
        assert await doc_store.update_one("e", {"id": "x"}, {"is_active": False})
        assert not await doc_store.update_one("e", {"id": "y"}, {"is_active": False})
        assert await doc_store.find("e") == [{"id": "x", "is_active": False, "name": "n"}]

    @pytest.mark.asyncio
    async def test_delete_many(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_many("rows", [_row(n) for n in range(4)])
        assert await doc_store.delete_many("rows", {"user_id": "u1"}) == 2
        assert [d["n"] for d in await doc_store.find("rows")] == [0, 2]

    @pytest.mark.asyncio
    async def test_replace_many_only_touches_filter(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_many(
            "sim",
            [
                {"user_id1": "a", "user_id2": "b"},
                {"user_id1": "a", "user_id2": "c"},
                {"user_id1": "b", "user_id2": "a"},
            ],
        )
        inserted = await doc_store.replace_many(
            "sim", {"user_id1": "a"}, [{"user_id1": "a", "user_id2": "d"}]
        )
        assert inserted == 1

        rows = await doc_store.find("sim", sort=[("user_id1", 1)])
        assert [(r["user_id1"], r["user_id2"]) for r in rows] == [("a", "d"), ("b", "a")]

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, doc_store: DocumentStore) -> None:
        await doc_store.insert_one("w", {"user_id": "u", "weights": {"9": 1.0}})
        found = await doc_store.find_one("w")
        found["weights"]["9"] = 2.0
        again = await doc_store.find_one("w")
        assert again["weights"]["9"] == 1.0


class TestSQLiteDocumentStore:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "cadence.db"
        await SQLiteDocumentStore(path).insert_one("rows", {"user_id": "u", "at": T0})

        reopened = SQLiteDocumentStore(path)
        assert await reopened.find("rows") == [{"user_id": "u", "at": T0}]

    @pytest.mark.asyncio
    async def test_unusable_path_raises_storage_error(self, tmp_path: Path) -> None:
        # A directory cannot be opened as a database file
        store = SQLiteDocumentStore(tmp_path)
        with pytest.raises(StorageError):
            await store.find("rows")

    @pytest.mark.asyncio
    async def test_string_filters_with_quotes(self, tmp_path: Path) -> None:
        store = SQLiteDocumentStore(tmp_path / "q.db")
        await store.insert_one("rows", {"user_id": "o'brien"})
        assert await store.find_one("rows", {"user_id": "o'brien"}) is not None


class TestCreateDocumentStore:
    """Tests for create_document_store()."""

    def test_memory_backend(self) -> None:
        store = create_document_store(StorageConfig(backend="memory"))
        assert isinstance(store, InMemoryDocumentStore)

    def test_sqlite_backend(self, tmp_path: Path) -> None:
        store = create_document_store(StorageConfig(backend="sqlite", path=tmp_path / "x.db"))
        assert isinstance(store, SQLiteDocumentStore)
        assert store.db_path == tmp_path / "x.db"
