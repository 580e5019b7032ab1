"""
Streaming archive writer for DocVault backups.

The writer builds a ZIP container with one entry per collection:

    <collection>.jsonl    one encoded document per line

The container is written onto a non-seekable sink; bytes are cut into
chunks and pushed through a bounded channel that the storage upload
consumes concurrently. Archiving and uploading therefore overlap, and
memory is bounded by (channel depth + 1) * chunk_size.

Invariants:
    - Entries are written line by line, never buffered whole
    - A full channel suspends the producer (backpressure)
    - Warnings go to diagnostics; structural errors abort the archive
    - After abort() the consumer sees the error instead of end-of-stream

How to change safely:
    - Chunks must stay >= 5 MiB (except the last) for S3 multipart
    - Test with entries larger than one chunk
"""

from __future__ import annotations

import asyncio
import logging
import warnings
import zipfile
from typing import AsyncIterable, AsyncIterator, List, Optional

from ..codec import LINE_EXTENSION
from ..errors import ArchiveError

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = "zip"
ARCHIVE_CONTENT_TYPE = "application/zip"

_EOF = object()


class ChunkChannel:
    """Bounded single-consumer channel of byte chunks.

    The producer side closes the channel either normally (end of stream)
    or with an error, which the consumer re-raises.
    """

    def __init__(self, max_pending: int = 2) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, chunk: bytes) -> None:
        if self._closed:
            raise ArchiveError("Cannot write to a closed archive stream")
        await self._queue.put(chunk)

    async def close(self) -> None:
        """Signal end of stream, waiting for room in the channel."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_EOF)

    def fail(self, error: BaseException) -> None:
        """Close the channel with an error, discarding pending chunks."""
        if self._error is None:
            self._error = error
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_EOF)

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                if self._error is not None:
                    raise self._error
                return
            yield item


class _ChunkingSink:
    """File-like sink that zipfile writes into.

    It has no tell()/seek(), so zipfile streams with data descriptors.
    """

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        self.buffer += data
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        pass


class ArchiveWriter:
    """Writes collection entries into a streamed ZIP archive.

    Attributes:
        chunk_size: Size of chunks handed to the consumer
        compression_level: Deflate level (0-9)
        diagnostics: Non-fatal warnings collected while writing

    Example:
        >>> writer = ArchiveWriter(chunk_size=8 * 1024 * 1024).open()
        >>> upload = asyncio.create_task(store.upload(key, writer.stream()))
        >>> await writer.append_entry("users", lines)
        >>> await writer.finalize()
        >>> result = await upload
    """

    def __init__(
        self,
        chunk_size: int = 8 * 1024 * 1024,
        compression_level: int = 9,
        max_pending_chunks: int = 2,
    ) -> None:
        """Initialize the writer.

        Args:
            chunk_size: Bytes per chunk pushed to the consumer
            compression_level: Deflate compression level
            max_pending_chunks: Channel depth before the producer waits
        """
        self.chunk_size = chunk_size
        self.compression_level = compression_level
        self.diagnostics: List[str] = []

        self._channel = ChunkChannel(max_pending=max_pending_chunks)
        self._sink = _ChunkingSink()
        self._zip: Optional[zipfile.ZipFile] = None
        self._entries: List[str] = []
        self._finalized = False

    @property
    def entries(self) -> List[str]:
        """Names of entries written so far."""
        return list(self._entries)

    @property
    def bytes_written(self) -> int:
        return self._sink.bytes_written

    @property
    def is_open(self) -> bool:
        return self._zip is not None

    def open(self) -> ArchiveWriter:
        """Open the underlying container. Returns self for chaining."""
        if self._zip is not None:
            raise ArchiveError("Archive already open")
        self._zip = zipfile.ZipFile(
            self._sink,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compression_level,
        )
        return self

    def stream(self) -> AsyncIterator[bytes]:
        """Consumer side: the archive bytes as an async chunk iterator."""
        return self._channel.__aiter__()

    def warn(self, message: str) -> None:
        """Record a non-fatal diagnostic."""
        self.diagnostics.append(message)
        logger.warning("Archive warning during backup", extra={"warning": message})

    async def append_entry(self, name: str, lines: AsyncIterable[str]) -> int:
        """Stream one collection into a new entry.

        Args:
            name: Collection name (the entry becomes <name>.jsonl)
            lines: Encoded documents, without trailing newlines

        Returns:
            Number of lines written

        Raises:
            ArchiveError: On structural failure; the archive is aborted
        """
        if self._zip is None or self._finalized:
            raise ArchiveError("Archive is not open for writing", entry=name)
        if not name or "/" in name or "\\" in name:
            error = ArchiveError(f"Invalid collection name for archive entry: {name!r}", entry=name)
            self.abort(error)
            raise error

        entry_name = f"{name}.{LINE_EXTENSION}"
        count = 0
        try:
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                handle = self._zip.open(entry_name, mode="w", force_zip64=True)
            for warning in caught:
                self.warn(str(warning.message))

            with handle:
                async for line in lines:
                    handle.write(line.encode("utf-8"))
                    handle.write(b"\n")
                    count += 1
                    if len(self._sink.buffer) >= self.chunk_size:
                        await self._drain()
            await self._drain()
        except (OSError, ValueError, RuntimeError, zipfile.LargeZipFile) as e:
            error = ArchiveError(f"Failed to write archive entry {entry_name}: {e}", entry=entry_name)
            self.abort(error)
            raise error from e
        except BaseException as e:
            self.abort(e)
            raise

        self._entries.append(entry_name)
        logger.debug("Archived collection", extra={"entry": entry_name, "documents": count})
        return count

    async def finalize(self) -> None:
        """Write the central directory and close the stream."""
        if self._zip is None:
            raise ArchiveError("Archive was never opened")
        if self._finalized:
            return
        self._finalized = True
        try:
            self._zip.close()
        except (OSError, ValueError) as e:
            error = ArchiveError(f"Failed to finalize archive: {e}")
            self.abort(error)
            raise error from e
        await self._drain(final=True)
        await self._channel.close()

    def abort(self, error: BaseException) -> None:
        """Abort the archive; the consumer receives error."""
        self._finalized = True
        self._sink.buffer.clear()
        if not self._channel.closed:
            logger.error("Aborting archive", extra={"error": str(error)})
        self._channel.fail(error)

    async def _drain(self, final: bool = False) -> None:
        """Move full chunks (or, when final, everything) to the channel."""
        buffer = self._sink.buffer
        while len(buffer) >= self.chunk_size:
            chunk = bytes(buffer[: self.chunk_size])
            del buffer[: self.chunk_size]
            await self._channel.put(chunk)
        if final and buffer:
            chunk = bytes(buffer)
            buffer.clear()
            await self._channel.put(chunk)
