"""
Unit tests for the restore engine.

Tests cover:
- Drop-and-replace (leftover documents never survive)
- Idempotent re-runs
- Batching and partial final batch
- Fail-fast on a corrupt line with a partial report
- Per-document rejections inside a batch
- Caller-supplied report filled in place
"""

from datetime import datetime

import pytest
from bson import ObjectId

from dbops.docvault.backup import RestoreReport, restore_archive
from dbops.docvault.database import InMemoryDatabase, InsertOutcome
from dbops.docvault.errors import ArchiveError, DecodeError
from tests.archives import build_archive, byte_stream, raw_archive

USERS = [
    {"_id": ObjectId("65a1b2c3d4e5f60718293a01"), "email": "a@example.com", "joined": datetime(2024, 1, 1)},
    {"_id": ObjectId("65a1b2c3d4e5f60718293a02"), "email": "b@example.com", "joined": datetime(2024, 2, 1)},
    {"_id": ObjectId("65a1b2c3d4e5f60718293a03"), "email": "c@example.com", "joined": datetime(2024, 3, 1)},
]


def by_id(documents):
    return sorted(documents, key=lambda d: str(d["_id"]))


class RecordingDatabase(InMemoryDatabase):
    """Records insert batch sizes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.batches = []

    async def insert_many(self, collection, documents) -> InsertOutcome:
        self.batches.append((collection, len(documents)))
        return await super().insert_many(collection, documents)


class TestRestoreArchive:
    """Tests for restore_archive()."""

    @pytest.mark.asyncio
    async def test_users_and_empty_sessions(self):
        """3 users + 0 sessions restore into a target with stale data."""
        data = await build_archive({"users": USERS, "sessions": []})
        target = InMemoryDatabase(
            "target",
            {
                "users": [{"_id": "stale-user"}],
                "sessions": [{"_id": "stale-session"}],
            },
        )

        report = await restore_archive(byte_stream(data), target)

        assert report.collections == {"users": 3, "sessions": 0}
        assert by_id(target.documents("users")) == by_id(USERS)
        assert target.documents("sessions") == []

    @pytest.mark.asyncio
    async def test_idempotent(self):
        data = await build_archive({"users": USERS})
        target = InMemoryDatabase("target")

        first = await restore_archive(byte_stream(data), target)
        snapshot = by_id(target.documents("users"))
        second = await restore_archive(byte_stream(data), target)

        assert first.collections == second.collections
        assert by_id(target.documents("users")) == snapshot
        assert second.complete

    @pytest.mark.asyncio
    async def test_batches(self):
        documents = [{"_id": n} for n in range(12)]
        data = await build_archive({"items": documents})
        target = RecordingDatabase("target")

        await restore_archive(byte_stream(data), target, batch_size=5)

        assert target.batches == [("items", 5), ("items", 5), ("items", 2)]

    @pytest.mark.asyncio
    async def test_blank_lines_skipped(self):
        data = raw_archive({"items.jsonl": '{"_id": 1}\n\n{"_id": 2}\n'})
        target = InMemoryDatabase("target")

        report = await restore_archive(byte_stream(data), target)

        assert report.collections == {"items": 2}

    @pytest.mark.asyncio
    async def test_corrupt_line_fails_fast(self):
        """Documents from completed batches are reported; the error surfaces."""
        good = "\n".join('{"_id": %d}' % n for n in range(4))
        data = raw_archive(
            {
                "accounts.jsonl": '{"_id": 1}\n',
                "items.jsonl": good + '\n{"_id": 99, "broken": \n{"_id": 100}\n',
                "later.jsonl": '{"_id": 1}\n',
            }
        )
        target = RecordingDatabase("target")

        with pytest.raises(DecodeError) as exc_info:
            await restore_archive(byte_stream(data), target, batch_size=2)

        error = exc_info.value
        assert error.entry == "items.jsonl"
        assert error.line_number == 5
        assert isinstance(error.report, RestoreReport)
        assert error.report.collections == {"accounts": 1, "items": 4}
        assert "later" not in target.collections

    @pytest.mark.asyncio
    async def test_rejections_do_not_block_siblings(self):
        data = raw_archive({"items.jsonl": '{"_id": 1}\n{"_id": 1}\n{"_id": 2}\n'})
        target = InMemoryDatabase("target")

        report = await restore_archive(byte_stream(data), target)

        assert report.collections == {"items": 2}
        assert report.rejected == {"items": 1}
        assert "E11000" in report.errors["items"][0]
        assert not report.complete
        assert report.to_dict()["rejected"] == {"items": 1}

    @pytest.mark.asyncio
    async def test_corrupt_container(self):
        target = InMemoryDatabase("target", {"users": [{"_id": 1}]})

        with pytest.raises(ArchiveError):
            await restore_archive(byte_stream(b"PK\x03\x04garbage"), target)

        assert target.documents("users") == [{"_id": 1}]

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            await restore_archive(byte_stream(b""), InMemoryDatabase(), batch_size=0)

    @pytest.mark.asyncio
    async def test_report_shape(self):
        data = await build_archive({"users": USERS})

        report = await restore_archive(byte_stream(data), InMemoryDatabase("target"))

        assert report.to_dict() == {"restoredCollections": {"users": 3}}
        assert report.documents == 3

    @pytest.mark.asyncio
    async def test_caller_report_filled_in_place(self):
        """A report passed in keeps the progress made before a failure."""
        data = raw_archive({"accounts.jsonl": '{"_id": 1}\n', "items.jsonl": '{"_id": 1, \n'})
        report = RestoreReport()

        with pytest.raises(DecodeError) as exc_info:
            await restore_archive(byte_stream(data), InMemoryDatabase("target"), report=report)

        assert exc_info.value.report is report
        assert report.collections == {"accounts": 1, "items": 0}
