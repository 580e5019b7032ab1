"""
Archive module for DocVault.

This module handles the backup container format:
- ArchiveWriter streams collection entries into a ZIP archive
- ArchiveReader yields entries and their lines back out

Archive layout:
    <collection>.jsonl    one encoded document per line

Invariants:
    - Archives are immutable once uploaded
    - Entry content is newline-delimited, one document per line
    - Non-data entries are ignored on read
"""

from .reader import ArchiveEntry, ArchiveReader, collection_name, spool_stream
from .writer import ARCHIVE_CONTENT_TYPE, ARCHIVE_EXTENSION, ArchiveWriter, ChunkChannel

__all__ = [
    "ARCHIVE_CONTENT_TYPE",
    "ARCHIVE_EXTENSION",
    "ArchiveEntry",
    "ArchiveReader",
    "ArchiveWriter",
    "ChunkChannel",
    "collection_name",
    "spool_stream",
]
