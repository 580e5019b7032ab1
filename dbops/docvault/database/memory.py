"""
In-memory document database for testing.

This module provides an in-memory DocumentDatabase plus a tiny "server"
that hands out databases by URI, so code paths that connect by URI can
be exercised without MongoDB.

Invariants:
    - Documents are deep-copied on the way in and out
    - _id is unique per collection; duplicates are rejected per document
      without blocking the rest of the batch (unordered semantics)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with DocumentDatabase protocol
"""

from __future__ import annotations

import copy
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set

from bson import ObjectId

from ..config import database_name_from_uri
from ..errors import DatabaseError
from .base import Document, InsertOutcome


class InMemoryDatabase:
    """In-memory implementation of DocumentDatabase for testing.

    Attributes:
        name: Database name
        collections: Collection name -> documents, in insertion order
        write_calls: Number of mutating calls received
        fail_cursor_on: Collections whose cursor raises after the first document
        closed: Whether close() was called
    """

    def __init__(self, name: str = "test", collections: Optional[Dict[str, List[Document]]] = None) -> None:
        self.name = name
        self.collections: Dict[str, List[Document]] = {}
        self.write_calls = 0
        self.fail_cursor_on: Set[str] = set()
        self.closed = False
        self.dropped = False
        for collection, documents in (collections or {}).items():
            self.collections[collection] = [copy.deepcopy(d) for d in documents]

    async def list_collection_names(self) -> List[str]:
        return list(self.collections)

    async def iter_documents(self, collection: str, batch_size: int = 500) -> AsyncIterator[Document]:
        for index, document in enumerate(list(self.collections.get(collection, []))):
            if index > 0 and collection in self.fail_cursor_on:
                raise DatabaseError(f"Cursor failed on collection {collection}", collection=collection)
            yield copy.deepcopy(document)

    async def drop_collection(self, collection: str) -> None:
        self.write_calls += 1
        self.collections.pop(collection, None)

    async def insert_many(self, collection: str, documents: Sequence[Document]) -> InsertOutcome:
        self.write_calls += 1
        target = self.collections.setdefault(collection, [])
        existing = {d.get("_id") for d in target}
        outcome = InsertOutcome()
        for document in documents:
            document = copy.deepcopy(document)
            document.setdefault("_id", ObjectId())
            if document["_id"] in existing:
                outcome.rejected += 1
                outcome.errors.append(
                    f"E11000 duplicate key error collection: {self.name}.{collection} "
                    f"dup key: {{ _id: {document['_id']!r} }}"
                )
                continue
            existing.add(document["_id"])
            target.append(document)
            outcome.inserted += 1
        return outcome

    async def collection_exists(self, collection: str) -> bool:
        return collection in self.collections

    async def count_documents(self, collection: str) -> int:
        return len(self.collections.get(collection, []))

    async def drop_database(self) -> None:
        self.write_calls += 1
        self.collections.clear()
        self.dropped = True

    async def close(self) -> None:
        self.closed = True

    # Testing helpers

    def documents(self, collection: str) -> List[Document]:
        """Copies of a collection's documents."""
        return [copy.deepcopy(d) for d in self.collections.get(collection, [])]


class InMemoryDatabaseServer:
    """Hands out InMemoryDatabase instances by URI.

    Use server.open as the database factory of an operation.

    Attributes:
        databases: Database name -> database
        opened: URIs passed to open(), in order
    """

    def __init__(self) -> None:
        self.databases: Dict[str, InMemoryDatabase] = {}
        self.opened: List[str] = []

    def database(self, name: str) -> InMemoryDatabase:
        """Get or create a database by name."""
        if name not in self.databases:
            self.databases[name] = InMemoryDatabase(name)
        return self.databases[name]

    async def open(self, uri: str) -> InMemoryDatabase:
        self.opened.append(uri)
        db = self.database(database_name_from_uri(uri))
        db.closed = False
        return db
