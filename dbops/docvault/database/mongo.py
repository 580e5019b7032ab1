"""
MongoDB database handle for DocVault.

Uses pymongo's asyncio client. Cursors are iterated with a bounded
batch size, so exporting a collection never holds more than one batch.

Invariants:
    - Dates decode as naive UTC datetimes (tz_aware=False), matching the
      default DocumentCodec, so exported values round-trip exactly
    - UUID binaries stay Binary (uuidRepresentation=unspecified), the
      same representation the DocumentCodec uses
    - All pymongo failures surface as DatabaseError
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, List, Optional, Sequence

from pymongo import AsyncMongoClient
from pymongo.errors import BulkWriteError, PyMongoError

from ..config import database_name_from_uri, redact_uri
from ..errors import DatabaseError
from .base import Document, InsertOutcome

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "system."
MAX_REPORTED_ERRORS = 5


class MongoDatabase:
    """DocumentDatabase backed by a MongoDB database.

    Attributes:
        uri: Connection URI
        name: Database name (from the URI path)

    Example:
        >>> db = MongoDatabase("mongodb://localhost:27017/shop")
        >>> await db.connect()
        >>> await db.list_collection_names()
        ['orders', 'users']
        >>> await db.close()
    """

    def __init__(
        self,
        uri: str,
        database_name: Optional[str] = None,
        tz_aware: bool = False,
        client: Any = None,
    ) -> None:
        """Initialize the handle.

        Args:
            uri: MongoDB connection URI
            database_name: Database name (defaults to the URI path)
            tz_aware: Return timezone-aware datetimes
            client: Pre-built AsyncMongoClient (tests, shared pools)
        """
        self.uri = uri
        self.name = database_name or database_name_from_uri(uri)
        self.tz_aware = tz_aware
        self._client = client
        self._owns_client = client is None
        self._db = client[self.name] if client is not None else None

    async def connect(self) -> None:
        """Create the client and verify the server is reachable."""
        if self._db is not None:
            return
        try:
            self._client = AsyncMongoClient(
                self.uri,
                tz_aware=self.tz_aware,
                uuidRepresentation="unspecified",
            )
            self._db = self._client[self.name]
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise DatabaseError(f"Cannot connect to {redact_uri(self.uri)}: {e}") from e
        logger.info("Connected to database", extra={"database": self.name})

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.close()
        self._client = None
        self._db = None

    @classmethod
    async def open(cls, uri: str) -> MongoDatabase:
        """Create and connect a handle."""
        db = cls(uri)
        await db.connect()
        return db

    def _database(self) -> Any:
        if self._db is None:
            raise DatabaseError("Database handle is not connected")
        return self._db

    async def list_collection_names(self) -> List[str]:
        try:
            names = await self._database().list_collection_names()
        except PyMongoError as e:
            raise DatabaseError(f"Failed to list collections: {e}") from e
        return [name for name in names if not name.startswith(SYSTEM_PREFIX)]

    async def iter_documents(self, collection: str, batch_size: int = 500) -> AsyncIterator[Document]:
        cursor = self._database()[collection].find({}, batch_size=batch_size)
        try:
            async for document in cursor:
                yield document
        except PyMongoError as e:
            raise DatabaseError(f"Cursor failed on collection {collection}: {e}", collection=collection) from e
        finally:
            await cursor.close()

    async def drop_collection(self, collection: str) -> None:
        try:
            await self._database().drop_collection(collection)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to drop collection {collection}: {e}", collection=collection) from e

    async def insert_many(self, collection: str, documents: Sequence[Document]) -> InsertOutcome:
        if not documents:
            return InsertOutcome()
        try:
            result = await self._database()[collection].insert_many(list(documents), ordered=False)
        except BulkWriteError as e:
            write_errors = e.details.get("writeErrors", [])
            return InsertOutcome(
                inserted=e.details.get("nInserted", 0),
                rejected=len(write_errors),
                errors=[err.get("errmsg", "") for err in write_errors[:MAX_REPORTED_ERRORS]],
            )
        except PyMongoError as e:
            raise DatabaseError(f"Insert into {collection} failed: {e}", collection=collection) from e
        return InsertOutcome(inserted=len(result.inserted_ids))

    async def collection_exists(self, collection: str) -> bool:
        try:
            names = await self._database().list_collection_names(filter={"name": collection})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to inspect collection {collection}: {e}", collection=collection) from e
        return bool(names)

    async def count_documents(self, collection: str) -> int:
        try:
            return await self._database()[collection].count_documents({})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to count {collection}: {e}", collection=collection) from e

    async def drop_database(self) -> None:
        if self._client is None:
            raise DatabaseError("Database handle is not connected")
        try:
            await self._client.drop_database(self.name)
        except PyMongoError as e:
            raise DatabaseError(f"Failed to drop database {self.name}: {e}") from e
        logger.info("Dropped database", extra={"database": self.name})
