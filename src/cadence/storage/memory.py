"""In-memory document store.

Keeps every collection in a list without any I/O. Used by tests and by the
"memory" storage backend. Each method runs without awaiting, so under asyncio
every call is atomic.
"""

from __future__ import annotations

import copy

from cadence.storage.base import DocumentStore
from cadence.storage.query import Document, Filter, SortSpec, matches, sort_documents


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store.

    Documents are deep-copied on the way in and out so callers never alias
    stored state.
    """

    def __init__(self) -> None:
        self.collections: dict[str, list[Document]] = {}

    def _docs(self, collection: str) -> list[Document]:
        return self.collections.setdefault(collection, [])

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,  # noqa: A002
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        found = [d for d in self._docs(collection) if matches(d, filter)]
        found = sort_documents(found, sort)
        if limit is not None:
            found = found[:limit]
        return copy.deepcopy(found)

    async def insert_one(self, collection: str, document: Document) -> None:
        self._docs(collection).append(copy.deepcopy(document))

    async def insert_many(self, collection: str, documents: list[Document]) -> int:
        self._docs(collection).extend(copy.deepcopy(documents))
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
        docs = self._docs(collection)
        for index, existing in enumerate(docs):
            if not matches(existing, filter):
                continue
            if if_absent:
                return False
            if expected is not None and not matches(existing, expected):
                return False
            docs[index] = copy.deepcopy(document)
            return True

        if expected is not None:
            return False
        docs.append(copy.deepcopy(document))
        return True

    async def update_one(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        fields: Document,
    ) -> bool:
        for existing in self._docs(collection):
            if matches(existing, filter):
                existing.update(copy.deepcopy(fields))
                return True
        return False

    async def delete_many(self, collection: str, filter: Filter) -> int:  # noqa: A002
        docs = self._docs(collection)
        kept = [d for d in docs if not matches(d, filter)]
        removed = len(docs) - len(kept)
        self.collections[collection] = kept
        return removed

    async def replace_many(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        documents: list[Document],
    ) -> int:
        await self.delete_many(collection, filter)
        return await self.insert_many(collection, documents)
