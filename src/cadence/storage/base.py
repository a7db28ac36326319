"""Abstract base for document stores.

The engine persists its own state (weights, metrics, experiments, anomalies,
similarities) through this small Mongo-like capability. Implementations
raise StorageError for any I/O failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from cadence.storage.query import Document, Filter, SortSpec

# Collections used by the engine
WEIGHTS_COLLECTION = "ml_weights"
METRICS_COLLECTION = "ml_performance_metrics"
EXPERIMENTS_COLLECTION = "ml_experiments"
ANOMALIES_COLLECTION = "ml_anomalies"
SIMILARITIES_COLLECTION = "user_similarities"


class DocumentStore(ABC):
    """Abstract async document store.

    Documents are plain dicts whose values may include datetimes; every
    backend must hand back what it was given.
    """

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Filter | None = None,  # noqa: A002
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching filter, sorted then truncated to limit."""
        ...

    async def find_one(
        self,
        collection: str,
        filter: Filter | None = None,  # noqa: A002
    ) -> Document | None:
        """Return the first matching document, or None."""
        found = await self.find(collection, filter, limit=1)
        return found[0] if found else None

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> None:
        ...

    @abstractmethod
    async def insert_many(self, collection: str, documents: list[Document]) -> int:
        """Insert documents atomically; returns how many were inserted."""
        ...

    @abstractmethod
    async def upsert(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        document: Document,
        *,
        expected: Filter | None = None,
        if_absent: bool = False,
    ) -> bool:
        """Replace the document matching filter, inserting it when none matches.

        Args:
            collection: Target collection.
            filter: Identifies the single logical document.
            document: Full replacement body.
            expected: Compare-and-swap guard. When given, the write only
                happens if a document matches both filter and expected.
            if_absent: Only insert; never replace an existing document.

        Returns:
            True if the write happened, False if a guard rejected it.
        """
        ...

    @abstractmethod
    async def update_one(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        fields: Document,
    ) -> bool:
        """Set fields on the first matching document. False if none matched."""
        ...

    @abstractmethod
    async def delete_many(self, collection: str, filter: Filter) -> int:  # noqa: A002
        ...

    @abstractmethod
    async def replace_many(
        self,
        collection: str,
        filter: Filter,  # noqa: A002
        documents: list[Document],
    ) -> int:
        """Delete everything matching filter and insert documents, as one unit."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release backend resources. Default is a no-op."""
