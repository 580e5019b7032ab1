"""
Object storage transport for DocVault.

This module provides a pluggable storage interface supporting:
- S3 and S3-compatible endpoints (production)
- In-memory (for testing)

Invariants:
    - Backup keys sort chronologically within a prefix
    - Provider failures surface as StorageError with the keys involved
"""

from .base import (
    DeleteResult,
    ObjectInfo,
    ObjectStore,
    UploadResult,
    create_object_store,
    format_timestamp,
    generate_backup_key,
    is_backup_key,
)
from .memory import InMemoryObjectStore
from .s3 import S3ObjectStore

__all__ = [
    # Protocol and types
    "ObjectStore",
    "ObjectInfo",
    "UploadResult",
    "DeleteResult",
    # Keys
    "format_timestamp",
    "generate_backup_key",
    "is_backup_key",
    # Factory
    "create_object_store",
    # Implementations
    "S3ObjectStore",
    "InMemoryObjectStore",
]
