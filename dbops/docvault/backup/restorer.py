"""
Restore engine for DocVault.

Rebuilds a database from an archive stream, one entry at a time:

    for each <collection>.jsonl entry:
        drop target collection
        decode lines ─▶ batch of batch_size ─▶ unordered insert
        flush the partial batch, record the count

Drop-and-replace makes restore idempotent: running it again from the
same archive converges to the same contents whatever was there before.

Invariants:
    - A line that fails to decode aborts the whole restore (DecodeError)
    - Documents refused by the database inside a batch do not block
      their siblings; they are counted in RestoreReport.rejected
    - Errors leaving restore_archive() carry the partial report (.report)
    - Entries are restored sequentially; there is no cross-entry parallelism

How to change safely:
    - Never switch to upserts: merging breaks idempotence
    - Keep memory bounded to one batch; never collect an entry first
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Dict, List, Optional

from ..archive import ArchiveEntry, ArchiveReader
from ..archive.reader import DEFAULT_SPOOL_MEMORY
from ..codec import DocumentCodec
from ..database import Document, DocumentDatabase
from ..errors import DocVaultError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
MAX_ERRORS_PER_COLLECTION = 5


@dataclass
class RestoreReport:
    """Per-collection outcome of one restore pass.

    Attributes:
        collections: Collection name -> documents inserted
        rejected: Collection name -> documents the database refused
        errors: Collection name -> first rejection messages
    """

    collections: Dict[str, int] = field(default_factory=dict)
    rejected: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        """True when no document was refused."""
        return not any(self.rejected.values())

    @property
    def documents(self) -> int:
        return sum(self.collections.values())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"restoredCollections": dict(self.collections)}
        if self.rejected:
            data["rejected"] = dict(self.rejected)
            data["rejectionErrors"] = {k: list(v) for k, v in self.errors.items()}
        return data


async def _flush(
    db: DocumentDatabase,
    collection: str,
    batch: List[Document],
    report: RestoreReport,
) -> None:
    outcome = await db.insert_many(collection, batch)
    report.collections[collection] = report.collections.get(collection, 0) + outcome.inserted
    if outcome.rejected:
        report.rejected[collection] = report.rejected.get(collection, 0) + outcome.rejected
        messages = report.errors.setdefault(collection, [])
        room = MAX_ERRORS_PER_COLLECTION - len(messages)
        messages.extend(outcome.errors[:max(room, 0)])
        logger.warning(
            f"Database rejected {outcome.rejected} document(s) in {collection}",
            extra={"collection": collection, "errors": outcome.errors[:1]},
        )


async def restore_entry(
    entry: ArchiveEntry,
    db: DocumentDatabase,
    report: RestoreReport,
    codec: DocumentCodec,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Replace one collection with the documents of an archive entry.

    Returns:
        Documents inserted for this entry
    """
    collection = entry.collection
    await db.drop_collection(collection)
    report.collections[collection] = 0

    batch: List[Document] = []
    for number, line in enumerate(entry.lines, start=1):
        if not line.strip():
            continue
        try:
            document = codec.decode(line, entry=entry.name, line_number=number)
        except DocVaultError:
            logger.error(
                f"Failed to parse backup line for {collection}",
                extra={"entry": entry.name, "line_number": number, "line_snippet": line[:100]},
            )
            raise
        batch.append(document)
        if len(batch) >= batch_size:
            await _flush(db, collection, batch, report)
            batch = []

    if batch:
        await _flush(db, collection, batch, report)

    inserted = report.collections[collection]
    logger.info(f"Restored {inserted} document(s) to collection {collection}")
    return inserted


async def restore_archive(
    chunks: AsyncIterable[bytes],
    db: DocumentDatabase,
    batch_size: int = DEFAULT_BATCH_SIZE,
    codec: Optional[DocumentCodec] = None,
    spool_memory: int = DEFAULT_SPOOL_MEMORY,
    report: Optional[RestoreReport] = None,
) -> RestoreReport:
    """Restore every data entry of an archive stream into db.

    Args:
        chunks: Archive bytes (e.g. ObjectStore.download())
        db: Target database handle
        batch_size: Documents per unordered insert
        codec: Document codec (default: canonical Extended JSON)
        spool_memory: Bytes of archive kept in memory before spilling to disk
        report: Report to fill in place (progress survives cancellation)

    Returns:
        RestoreReport

    Raises:
        DecodeError: On the first corrupt line
        ArchiveError: If the archive container is corrupt
        StorageError / DatabaseError: On transport or database failure
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    codec = codec or DocumentCodec()
    if report is None:
        report = RestoreReport()

    try:
        async with await ArchiveReader.from_stream(chunks, max_memory=spool_memory) as reader:
            for entry in reader.entries():
                await restore_entry(entry, db, report, codec, batch_size=batch_size)
    except DocVaultError as e:
        e.report = report
        raise

    logger.info(
        "Restore completed",
        extra={
            "database": db.name,
            "collections": len(report.collections),
            "documents": report.documents,
            "rejected": sum(report.rejected.values()),
        },
    )
    return report
