"""
Document database handles for DocVault.

Backends:
- MongoDB via pymongo's asyncio client (production)
- In-memory (for testing)
"""

from .base import DatabaseFactory, Document, DocumentDatabase, InsertOutcome
from .memory import InMemoryDatabase, InMemoryDatabaseServer
from .mongo import MongoDatabase

__all__ = [
    "DatabaseFactory",
    "Document",
    "DocumentDatabase",
    "InsertOutcome",
    "InMemoryDatabase",
    "InMemoryDatabaseServer",
    "MongoDatabase",
]
