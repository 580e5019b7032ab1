"""Shared fixtures for DocVault tests."""

import pytest

from dbops.docvault.database import InMemoryDatabaseServer
from dbops.docvault.storage import InMemoryObjectStore


@pytest.fixture
def store():
    """Fresh in-memory object store."""
    return InMemoryObjectStore(bucket="test-bucket")


@pytest.fixture
def server():
    """Fresh in-memory database server."""
    return InMemoryDatabaseServer()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's environment out of configuration tests."""
    for name in (
        "AWS_S3_BUCKET", "S3_BUCKET", "AWS_S3_REGION", "AWS_REGION", "AWS_DEFAULT_REGION",
        "AWS_S3_ENDPOINT", "S3_ENDPOINT", "AWS_S3_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID",
        "AWS_S3_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY",
        "BACKUP_PREFIX", "BACKUP_RETENTION", "BACKUP_BATCH_SIZE", "BACKUP_CHUNK_SIZE",
        "BACKUP_COMPRESSION_LEVEL", "BACKUP_SMOKE_COLLECTIONS", "BACKUP_VERIFY_URI",
        "MONGO_URI", "MONGODB_URI", "TARGET_MONGO_URI", "DR_TARGET_URI",
        "DR_MIGRATE_COMMAND", "DR_VERIFY_COMMAND", "DR_STEP_TIMEOUT_SECONDS",
        "SLACK_WEBHOOK_URL", "SLACK_RELEASE_WEBHOOK", "SLACK_WEBHOOK",
        "DISCORD_WEBHOOK_URL", "ALERT_TIMEOUT_SECONDS", "LOG_LEVEL", "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
