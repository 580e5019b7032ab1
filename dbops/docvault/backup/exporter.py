"""
Export engine for DocVault.

Drives every collection of the source database through the document
codec into an archive writer:

    list collections ─▶ for each: cursor ─▶ encode ─▶ writer entry

The writer's byte stream is consumed concurrently by the upload, so the
export never holds more than one cursor batch plus one archive chunk.

Invariants:
    - Every document of every (non-system) collection is exported
    - A cursor error aborts the whole archive; the upload sees the error
    - Collection order follows the database's enumeration order
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..archive import ArchiveWriter
from ..codec import DocumentCodec
from ..database import DocumentDatabase

logger = logging.getLogger(__name__)


@dataclass
class ExportSummary:
    """What an export wrote.

    Attributes:
        collections: Collection name -> documents exported
        diagnostics: Non-fatal archive warnings
    """

    collections: Dict[str, int] = field(default_factory=dict)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def documents(self) -> int:
        return sum(self.collections.values())


async def _encoded_lines(
    db: DocumentDatabase,
    collection: str,
    codec: DocumentCodec,
    batch_size: int,
) -> AsyncIterator[str]:
    async for document in db.iter_documents(collection, batch_size=batch_size):
        yield codec.encode(document)


async def export_database(
    db: DocumentDatabase,
    writer: ArchiveWriter,
    codec: Optional[DocumentCodec] = None,
    batch_size: int = 500,
) -> ExportSummary:
    """Export every collection into writer and finalize it.

    Args:
        db: Source database handle
        writer: Archive writer (opened here if needed)
        codec: Document codec (default: canonical Extended JSON)
        batch_size: Cursor batch size

    Returns:
        ExportSummary with per-collection counts

    Raises:
        DatabaseError: If enumeration or a cursor fails
        ArchiveError: If the archive cannot be written
    """
    codec = codec or DocumentCodec()
    summary = ExportSummary()
    if not writer.is_open:
        writer.open()

    try:
        names = await db.list_collection_names()
        logger.info("Exporting collections", extra={"database": db.name, "collections": len(names)})

        for name in names:
            count = await writer.append_entry(name, _encoded_lines(db, name, codec, batch_size))
            summary.collections[name] = count
            logger.debug(f"Exported {count} document(s) from collection {name}")

        await writer.finalize()
    except BaseException as e:
        writer.abort(e)
        raise

    summary.diagnostics = list(writer.diagnostics)
    logger.info(
        "Export finished",
        extra={
            "database": db.name,
            "collections": len(summary.collections),
            "documents": summary.documents,
            "archive_bytes": writer.bytes_written,
        },
    )
    return summary


def start_export(
    db: DocumentDatabase,
    writer: ArchiveWriter,
    codec: Optional[DocumentCodec] = None,
    batch_size: int = 500,
) -> Tuple[ArchiveWriter, "asyncio.Task[ExportSummary]"]:
    """Start exporting in the background.

    Returns:
        The writer (consume writer.stream()) and the completion task
    """
    task = asyncio.create_task(export_database(db, writer, codec=codec, batch_size=batch_size))
    return writer, task
