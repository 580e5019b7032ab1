"""
DocVault Test Suite.

This package contains:
- unit/: Unit tests (in-memory storage and database, fake S3 client)
- integration/: Backup -> restore -> verify -> recover flows end to end
"""
