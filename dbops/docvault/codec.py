"""
Document codec for DocVault archives.

Each database document is encoded as one line of MongoDB Canonical
Extended JSON. Every value kind that plain JSON cannot carry is wrapped
in an explicit "$" tag, so decoding never has to guess a type from the
shape of a string:

    ObjectId           -> {"$oid": "..."}
    datetime           -> {"$date": {"$numberLong": "<ms since epoch>"}}
    bytes / Binary     -> {"$binary": {"base64": "...", "subType": "00"}}
    int (32/64-bit)    -> {"$numberInt": "..."} / {"$numberLong": "..."}
    float              -> {"$numberDouble": "..."}
    Binary subtype 3/4 -> kept as Binary, never converted to uuid.UUID
    Decimal128, Timestamp, Regex, MinKey/MaxKey, Code, DBRef ...

Invariants:
    - One document per line; JSON escaping keeps newlines out of lines
    - decode(encode(doc)) == doc for every document the database client returns
    - UUID representation matches the client default (UNSPECIFIED): native
      uuid.UUID values are refused, as the client itself refuses them
    - Only JSON objects decode to documents; anything else is corrupt

How to change safely:
    - Never switch to relaxed mode: it collapses int64 and double widths
    - Changing datetime or UUID handling affects existing archives
"""

from __future__ import annotations

import json
from datetime import timezone
from typing import Any, Dict, Optional

from bson import json_util
from bson.binary import UuidRepresentation
from bson.errors import BSONError
from bson.json_util import JSONMode, JSONOptions

from .errors import ArchiveError, DecodeError

Document = Dict[str, Any]

LINE_EXTENSION = "jsonl"


class DocumentCodec:
    """Type-preserving line codec for documents.

    Attributes:
        json_options: Extended JSON options shared by encode and decode

    Example:
        >>> codec = DocumentCodec()
        >>> line = codec.encode({"_id": ObjectId(), "at": datetime(2025, 1, 1)})
        >>> codec.decode(line)["at"]
        datetime.datetime(2025, 1, 1, 0, 0)
    """

    def __init__(
        self,
        tz_aware: bool = False,
        uuid_representation: int = UuidRepresentation.UNSPECIFIED,
    ) -> None:
        """Initialize the codec.

        Args:
            tz_aware: Decode dates as timezone-aware UTC datetimes. Must
                match the database client setting for exact round-trips.
            uuid_representation: bson UuidRepresentation. Must match the
                database client so UUID binaries are restorable.
        """
        options: Dict[str, Any] = {
            "json_mode": JSONMode.CANONICAL,
            "uuid_representation": uuid_representation,
            "tz_aware": tz_aware,
        }
        if tz_aware:
            options["tzinfo"] = timezone.utc
        self.json_options = JSONOptions(**options)

    def encode(self, document: Document) -> str:
        """Encode a document as a single line (without trailing newline).

        Raises:
            ArchiveError: If the document holds a value with no BSON form
        """
        try:
            return json_util.dumps(
                document,
                json_options=self.json_options,
                separators=(",", ":"),
                ensure_ascii=False,
            )
        except (TypeError, ValueError, BSONError) as e:
            raise ArchiveError(f"Cannot encode document {document.get('_id')!r}: {e}")

    def decode(
        self,
        line: str,
        entry: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> Document:
        """Decode a line back into a document.

        Args:
            line: Encoded document
            entry: Archive entry name, for error context
            line_number: Line number within the entry, for error context

        Raises:
            DecodeError: If the line is not a valid encoded document
        """
        try:
            document = json_util.loads(line, json_options=self.json_options)
        except (json.JSONDecodeError, ValueError, TypeError, KeyError, OverflowError, BSONError) as e:
            raise DecodeError(
                f"Failed to decode document line: {e}",
                line=line,
                entry=entry,
                line_number=line_number,
            ) from e

        if not isinstance(document, dict):
            raise DecodeError(
                f"Encoded line is a {type(document).__name__}, expected an object",
                line=line,
                entry=entry,
                line_number=line_number,
            )
        return document


_default_codec = DocumentCodec()


def encode(document: Document) -> str:
    """Encode a document with the default codec."""
    return _default_codec.encode(document)


def decode(line: str) -> Document:
    """Decode a line with the default codec."""
    return _default_codec.decode(line)
