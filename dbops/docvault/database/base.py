"""
Base protocol and types for the document database handle.

The backup engine only needs a narrow slice of a document database:
enumerate collections, stream a collection with a cursor, drop and
bulk-insert collections, count documents, and drop a whole database.

Invariants:
    - iter_documents() never materialises a whole collection
    - insert_many() is unordered: one rejected document does not block
      its siblings, and the outcome reports both counts
    - drop_collection() on a missing collection is not an error
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Protocol,
    Sequence,
    runtime_checkable,
)

Document = Dict[str, Any]


@dataclass
class InsertOutcome:
    """Result of one unordered batch insert.

    Attributes:
        inserted: Documents the database accepted
        rejected: Documents the database refused
        errors: Messages for the refused documents
    """

    inserted: int = 0
    rejected: int = 0
    errors: List[str] = field(default_factory=list)


@runtime_checkable
class DocumentDatabase(Protocol):
    """Protocol for document database handles.

    A handle is opened for one operation and closed at its end; it is
    passed explicitly through the pipeline, never stored globally.
    """

    name: str

    @abstractmethod
    async def list_collection_names(self) -> List[str]:
        """Names of all collections in the database."""
        ...

    @abstractmethod
    def iter_documents(self, collection: str, batch_size: int = 500) -> AsyncIterator[Document]:
        """Stream every document of a collection.

        Raises:
            DatabaseError: If the cursor fails
        """
        ...

    @abstractmethod
    async def drop_collection(self, collection: str) -> None:
        """Drop a collection if it exists."""
        ...

    @abstractmethod
    async def insert_many(self, collection: str, documents: Sequence[Document]) -> InsertOutcome:
        """Insert documents as one unordered batch."""
        ...

    @abstractmethod
    async def collection_exists(self, collection: str) -> bool:
        ...

    @abstractmethod
    async def count_documents(self, collection: str) -> int:
        ...

    @abstractmethod
    async def drop_database(self) -> None:
        """Drop the whole database."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


DatabaseFactory = Callable[[str], Awaitable[DocumentDatabase]]
