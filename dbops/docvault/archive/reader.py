"""
Archive reader for DocVault backups.

A ZIP container keeps its central directory at the end, so the
downloaded byte stream is first spooled (in memory up to a threshold,
then to a temporary file). Entries are then yielded lazily, in archive
order, and each entry's lines are decompressed only as they are
consumed.

Invariants:
    - Only "<name>.jsonl" file entries are data entries; others are skipped
    - Iteration is forward-only and single-pass
    - Corrupt containers surface as ArchiveError, never as silent truncation
    - At most max_memory archive bytes stay resident while spooling
"""

from __future__ import annotations

import io
import logging
import tempfile
import zipfile
import zlib
from dataclasses import dataclass
from typing import IO, AsyncIterable, Iterator, Optional

from ..codec import LINE_EXTENSION
from ..errors import ArchiveError

logger = logging.getLogger(__name__)

# One default I/O chunk; larger archives spill to a temporary file
DEFAULT_SPOOL_MEMORY = 8 * 1024 * 1024

_DATA_SUFFIX = f".{LINE_EXTENSION}"


@dataclass
class ArchiveEntry:
    """One data entry of an archive.

    Attributes:
        name: Entry name inside the archive
        collection: Collection name derived from the entry name
        lines: Lazy iterator of raw lines (newline stripped)
    """

    name: str
    collection: str
    lines: Iterator[str]


def collection_name(entry_name: str) -> Optional[str]:
    """Derive the collection name from a data entry name.

    Returns None for entries that are not top-level .jsonl files.
    """
    if not entry_name.endswith(_DATA_SUFFIX) or "/" in entry_name:
        return None
    name = entry_name[: -len(_DATA_SUFFIX)]
    return name or None


async def spool_stream(
    chunks: AsyncIterable[bytes],
    max_memory: int = DEFAULT_SPOOL_MEMORY,
) -> IO[bytes]:
    """Copy an async byte stream into a rewound spooled temporary file."""
    spool = tempfile.SpooledTemporaryFile(max_size=max_memory, mode="w+b")
    try:
        async for chunk in chunks:
            spool.write(chunk)
        spool.seek(0)
    except BaseException:
        spool.close()
        raise
    return spool


class ArchiveReader:
    """Iterates the data entries of a spooled archive.

    Example:
        >>> async with await ArchiveReader.from_stream(chunks) as reader:
        ...     for entry in reader.entries():
        ...         for line in entry.lines:
        ...             handle(entry.collection, line)
    """

    def __init__(self, fileobj: IO[bytes]) -> None:
        """Open an archive from a seekable binary file object.

        Raises:
            ArchiveError: If the container is not a readable archive
        """
        self._fileobj = fileobj
        try:
            self._zip = zipfile.ZipFile(fileobj, mode="r")
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
            raise ArchiveError(f"Backup archive is corrupt or not a zip file: {e}") from e
        self._consumed = False

    @classmethod
    async def from_stream(
        cls,
        chunks: AsyncIterable[bytes],
        max_memory: int = DEFAULT_SPOOL_MEMORY,
    ) -> ArchiveReader:
        """Spool a downloaded stream and open it."""
        spool = await spool_stream(chunks, max_memory=max_memory)
        try:
            return cls(spool)
        except ArchiveError:
            spool.close()
            raise

    def entries(self) -> Iterator[ArchiveEntry]:
        """Yield data entries in archive order.

        Raises:
            ArchiveError: If called a second time
        """
        if self._consumed:
            raise ArchiveError("Archive entries can only be iterated once")
        self._consumed = True
        return self._iter_entries()

    def _iter_entries(self) -> Iterator[ArchiveEntry]:
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            collection = collection_name(info.filename)
            if collection is None:
                logger.debug("Skipping non-data archive entry", extra={"entry": info.filename})
                continue
            yield ArchiveEntry(
                name=info.filename,
                collection=collection,
                lines=self._iter_lines(info),
            )

    def _iter_lines(self, info: zipfile.ZipInfo) -> Iterator[str]:
        try:
            with self._zip.open(info, mode="r") as raw:
                text = io.TextIOWrapper(raw, encoding="utf-8")
                for line in text:
                    yield line.rstrip("\r\n")
        except (zipfile.BadZipFile, zlib.error, EOFError, UnicodeDecodeError, OSError) as e:
            raise ArchiveError(
                f"Failed to read archive entry {info.filename}: {e}", entry=info.filename
            ) from e

    def close(self) -> None:
        self._zip.close()
        self._fileobj.close()

    async def __aenter__(self) -> ArchiveReader:
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
