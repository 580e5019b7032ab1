"""
Error types for DocVault.

This module defines all exception types raised by the backup engine:
- DocVaultError: Base exception
- ConfigurationError: Required settings missing or invalid (pre-flight)
- StorageError: Object storage provider failure
- NotFoundError: No backup (or no object) where one is required
- ArchiveError: Structural archive write/read failure
- DecodeError: A single archive line could not be decoded
- DatabaseError: Document database failure
- StepError: An external recovery step (migrations, checks) failed
- OperationTimeoutError: An operation ran past its deadline

Invariants:
    - All errors inherit from DocVaultError
    - Errors include the keys/lines involved for debugging
    - Provider exceptions are translated at the adapter boundary
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

LINE_SNIPPET_LENGTH = 100


class DocVaultError(Exception):
    """Base exception for all DocVault errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        report: Partial progress attached at the operation boundary
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCVAULT_ERROR"
        self.details = details or {}
        self.report: Any = None


class ConfigurationError(DocVaultError):
    """Required configuration is missing or invalid.

    Raised before any work starts, so nothing is partially executed.
    """

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )
        self.setting = setting


class StorageError(DocVaultError):
    """Object storage operation failed.

    Attributes:
        keys: Object keys involved in the failed operation
        deleted: Keys that were deleted before a batch delete failed
    """

    def __init__(
        self,
        message: str,
        keys: Optional[Sequence[str]] = None,
        deleted: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"keys": list(keys or []), "deleted": list(deleted or [])},
        )
        self.keys: List[str] = list(keys or [])
        self.deleted: List[str] = list(deleted or [])


class NotFoundError(DocVaultError):
    """No backup exists where one is required."""

    def __init__(self, message: str, prefix: Optional[str] = None, key: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"prefix": prefix, "key": key},
        )
        self.prefix = prefix
        self.key = key


class ArchiveError(DocVaultError):
    """Structural archive failure (corrupt container, invalid entry)."""

    def __init__(self, message: str, entry: Optional[str] = None) -> None:
        super().__init__(message, code="ARCHIVE_ERROR", details={"entry": entry})
        self.entry = entry


class DecodeError(DocVaultError):
    """An encoded document line could not be decoded.

    A corrupt line means a corrupt archive: restores abort on it.

    Attributes:
        line_snippet: First characters of the offending line
        entry: Archive entry the line came from, if known
        line_number: 1-based line number within the entry, if known
    """

    def __init__(
        self,
        message: str,
        line: str = "",
        entry: Optional[str] = None,
        line_number: Optional[int] = None,
    ) -> None:
        snippet = line[:LINE_SNIPPET_LENGTH]
        super().__init__(
            message,
            code="DECODE_ERROR",
            details={"line_snippet": snippet, "entry": entry, "line_number": line_number},
        )
        self.line_snippet = snippet
        self.entry = entry
        self.line_number = line_number


class DatabaseError(DocVaultError):
    """Document database operation failed."""

    def __init__(self, message: str, collection: Optional[str] = None) -> None:
        super().__init__(message, code="DATABASE_ERROR", details={"collection": collection})
        self.collection = collection


class StepError(DocVaultError):
    """An external recovery step exited unsuccessfully."""

    def __init__(
        self,
        message: str,
        step: str,
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(
            message,
            code="STEP_ERROR",
            details={"step": step, "returncode": returncode, "output": output},
        )
        self.step = step
        self.returncode = returncode
        self.output = output


class OperationTimeoutError(DocVaultError):
    """An operation did not finish before its deadline.

    Attributes:
        timeout: Deadline in seconds
    """

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        super().__init__(message, code="TIMEOUT", details={"timeout": timeout})
        self.timeout = timeout
