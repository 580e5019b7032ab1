"""
Unit tests for the docvault command line.

Commands run against in-memory collaborators passed through run().
"""

import asyncio
import json
import shlex
import sys

import pytest

from dbops.docvault.database import InMemoryDatabase
from dbops.docvault.main import EXIT_CONFIG, EXIT_FAILED, EXIT_OK, build_parser, exit_code_for, run


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("AWS_S3_BUCKET", "test-bucket")
    monkeypatch.setenv("MONGO_URI", "mongodb://localhost:27017/app")
    monkeypatch.setenv("LOG_FORMAT", "text")


@pytest.fixture
def source(server):
    db = server.database("app")
    db.collections["users"] = [{"_id": 1, "name": "ada"}, {"_id": 2, "name": "grace"}]
    db.collections["orders"] = [{"_id": 10, "user": 1}]
    return db


class RefusingDatabase(InMemoryDatabase):
    """Database whose driver rejects every insert with a non-DocVault error."""

    async def insert_many(self, collection, documents):
        raise ValueError("cannot encode native uuid.UUID with UuidRepresentation.UNSPECIFIED")


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify_event(self, title, details=None, icon=None):
        self.events.append((title, details or {}))
        return 1


def python_command(code):
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


def cli(capsys, argv, **collaborators):
    code = run(argv, **collaborators)
    out = capsys.readouterr().out
    return code, json.loads(out)


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_global_options(self):
        args = build_parser().parse_args(["--timeout", "30", "-v", "list"])

        assert args.timeout == 30.0
        assert args.verbose
        assert args.command == "list"


class TestCommands:
    """End-to-end command behaviour with in-memory backends."""

    def test_backup_then_list(self, capsys, env, store, server, source):
        code, report = cli(capsys, ["backup", "--tag", "manual"], store=store, open_database=server.open)

        assert code == EXIT_OK
        assert report["backupKey"].startswith("backups/backup-")
        assert report["backupKey"].endswith("-manual.zip")
        assert report["collections"] == {"users": 2, "orders": 1}
        assert report["retentionResult"] == {"deleted": 0, "retained": 1}
        assert store.keys() == [report["backupKey"]]

        code, listing = cli(capsys, ["list"], store=store, open_database=server.open)

        assert code == EXIT_OK
        assert listing["count"] == 1
        assert listing["backups"][0]["key"] == report["backupKey"]

    def test_restore(self, capsys, env, store, server, source):
        _, backup = cli(capsys, ["backup"], store=store, open_database=server.open)

        code, report = cli(
            capsys,
            ["restore", backup["backupKey"], "--target-uri", "mongodb://localhost:27017/restored"],
            store=store,
            open_database=server.open,
        )

        assert code == EXIT_OK
        assert report["restoredCollections"] == {"users": 2, "orders": 1}
        assert report["complete"] is True
        assert server.databases["restored"].documents("users") == source.documents("users")

    def test_restore_missing_key(self, capsys, env, store, server):
        code, report = cli(
            capsys, ["restore", "backups/nope.zip"], store=store, open_database=server.open
        )

        assert code == EXIT_FAILED
        assert "not found" in report["error"]
        assert report["backupKey"] == "backups/nope.zip"

    def test_verify(self, capsys, env, store, server, source):
        cli(capsys, ["backup"], store=store, open_database=server.open)

        code, report = cli(capsys, ["verify"], store=store, open_database=server.open)

        assert code == EXIT_OK
        assert report["success"] is True
        assert report["smokeChecks"] == {"users": 2, "orders": 1, "products": 0}
        assert server.databases["app-verify"].dropped

    def test_disaster_recover_dry_run(self, capsys, env, store, server, source):
        cli(capsys, ["backup"], store=store, open_database=server.open)
        server.opened.clear()

        code, report = cli(
            capsys,
            ["disaster-recover", "--dry-run", "--target-uri", "mongodb://dr:27017/app"],
            store=store,
            open_database=server.open,
        )

        assert code == EXIT_OK
        assert report["dryRun"] is True
        assert report["backupKey"]
        assert server.opened == []

    def test_disaster_recover_requires_commands(self, capsys, env, store, server, source):
        cli(capsys, ["backup"], store=store, open_database=server.open)

        code, report = cli(capsys, ["disaster-recover"], store=store, open_database=server.open)

        assert code == EXIT_CONFIG
        assert "DR_MIGRATE_COMMAND" in report["error"]

    def test_disaster_recover_empty_prefix(self, capsys, env, monkeypatch, store, server):
        monkeypatch.setenv("DR_MIGRATE_COMMAND", "true")
        monkeypatch.setenv("DR_VERIFY_COMMAND", "true")

        code, report = cli(capsys, ["disaster-recover"], store=store, open_database=server.open)

        assert code == EXIT_FAILED
        assert report["status"] == "failed"
        assert report["failedStep"] == "select"
        assert server.opened == []

    def test_unexpected_error_is_reported(self, capsys, env, store, server, source):
        _, backup = cli(capsys, ["backup"], store=store, open_database=server.open)

        async def open_refusing(uri):
            return RefusingDatabase("restored")

        code, report = cli(capsys, ["restore", backup["backupKey"]], store=store, open_database=open_refusing)

        assert code == EXIT_FAILED
        assert report["type"] == "ValueError"
        assert "cannot encode native uuid.UUID" in report["error"]

    def test_disaster_recover_timeout_keeps_run_report(self, capsys, env, monkeypatch, store, server, source):
        monkeypatch.setenv("DR_MIGRATE_COMMAND", python_command("import time; time.sleep(30)"))
        monkeypatch.setenv("DR_VERIFY_COMMAND", python_command("pass"))
        _, backup = cli(capsys, ["backup"], store=store, open_database=server.open)
        notifier = RecordingNotifier()

        code, report = cli(
            capsys,
            ["--timeout", "1", "disaster-recover", "--target-uri", "mongodb://localhost:27017/rebuilt"],
            store=store,
            open_database=server.open,
            notifier=notifier,
        )

        assert code == EXIT_FAILED
        assert report["status"] == "failed"
        assert report["failedStep"] == "migrate"
        assert report["backupKey"] == backup["backupKey"]
        assert report["restoreStatus"] == "success"
        assert report["migrateStatus"] == "failed"
        assert report["restoreCounts"] == {"users": 2, "orders": 1}
        assert "timed out" in report["error"]
        assert notifier.events[0][1]["failedStep"] == "migrate"

    def test_timeout_on_other_commands(self, capsys, env, store, server, source):
        async def open_slow(uri):
            await asyncio.sleep(30)

        code, report = cli(capsys, ["--timeout", "0.2", "backup"], store=store, open_database=open_slow)

        assert code == EXIT_FAILED
        assert report["code"] == "TIMEOUT"
        assert "Timed out after 0.2s" in report["error"]

    def test_retention(self, capsys, env, store, server):
        for day in range(1, 5):
            store.put_object(f"backups/backup-2025-01-0{day}T00-00-00-000Z.zip", b"zip")

        code, report = cli(capsys, ["retention", "--keep", "1"], store=store, open_database=server.open)

        assert code == EXIT_OK
        assert report["retentionResult"] == {"deleted": 3, "retained": 1}
        assert store.keys() == ["backups/backup-2025-01-04T00-00-00-000Z.zip"]

    def test_missing_bucket(self, capsys, store, server):
        code, report = cli(capsys, ["list"], store=store, open_database=server.open)

        assert code == EXIT_CONFIG
        assert "AWS_S3_BUCKET" in report["error"]

    def test_invalid_env_number(self, capsys, env, monkeypatch, store, server):
        monkeypatch.setenv("BACKUP_BATCH_SIZE", "lots")

        code, report = cli(capsys, ["list"], store=store, open_database=server.open)

        assert code == EXIT_CONFIG
        assert report["setting"] == "BACKUP_BATCH_SIZE"


class TestExitCodes:
    def test_partial_restore_fails(self):
        assert exit_code_for("restore", {"complete": False}) == EXIT_FAILED
        assert exit_code_for("restore", {"complete": True}) == EXIT_OK

    def test_verification(self):
        assert exit_code_for("verify", {"success": False}) == EXIT_FAILED

    def test_disaster_recovery(self):
        assert exit_code_for("disaster-recover", {"status": "completed"}) == EXIT_OK
        assert exit_code_for("disaster-recover", {"status": "failed"}) == EXIT_FAILED
