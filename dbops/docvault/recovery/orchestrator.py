"""
Disaster-recovery orchestrator.

Rebuilds a target database from the latest backup, then hands it to the
external migration and check steps:

    selecting ─▶ restoring ─▶ migrating ─▶ verifying ─▶ completed
        │            │            │            │
        └────────────┴────────────┴────────────┴──────▶ failed

Invariants:
    - No backups: fail before any connection to the target is opened
    - Dry-run stops after selecting; it never opens the target
    - A failed or partial restore stops the run; migrate/verify never start
    - Steps that already succeeded stay recorded as success after a failure
    - Completed and failed runs send an alert; alert failures never propagate
    - An expired deadline fails the run like any step error (alert, report);
      only cancellation from outside skips the alert
    - No step is retried

How to change safely:
    - Keep the run record mutated in place so failures carry the progress
    - Keep target URIs redacted in everything that leaves the process
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..alerts import Notifier
from ..archive.reader import DEFAULT_SPOOL_MEMORY
from ..backup import restore_archive, select_latest_backup
from ..backup.restorer import DEFAULT_BATCH_SIZE, RestoreReport
from ..config import redact_uri
from ..database import DatabaseFactory
from ..errors import ConfigurationError, DatabaseError, DocVaultError, OperationTimeoutError
from ..storage import ObjectStore
from .steps import RecoveryStep

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    SELECTING = "selecting"
    RESTORING = "restoring"
    MIGRATING = "migrating"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment else None


@dataclass
class DisasterRecoveryRun:
    """Mutable record of one disaster-recovery invocation.

    Attributes:
        target: Redacted target database URI
        backup_key: Selected backup key
        restore_counts: Collection name -> documents restored
        state: Current state; completed and failed are terminal
    """

    target: str
    dry_run: bool = False
    backup_key: Optional[str] = None
    backup_size: Optional[int] = None
    state: RunState = RunState.SELECTING
    restore_status: StepStatus = StepStatus.PENDING
    migrate_status: StepStatus = StepStatus.PENDING
    verify_status: StepStatus = StepStatus.PENDING
    restore_counts: Dict[str, int] = field(default_factory=dict)
    rejected: Dict[str, int] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "backupKey": self.backup_key,
            "backupSize": self.backup_size,
            "targetUri": self.target,
            "dryRun": self.dry_run,
            "status": self.state.value,
            "restoreStatus": self.restore_status.value,
            "migrateStatus": self.migrate_status.value,
            "verifyStatus": self.verify_status.value,
            "restoreCounts": dict(self.restore_counts),
            "startedAt": _iso(self.started_at),
        }
        if self.rejected:
            data["rejected"] = dict(self.rejected)
        if self.completed_at:
            data["completedAt"] = _iso(self.completed_at)
        if self.failed_at:
            data["failedAt"] = _iso(self.failed_at)
            data["failedStep"] = self.failed_step
            data["error"] = self.error
        return data


class DisasterRecoveryOrchestrator:
    """Select, restore, migrate and verify, fail-fast.

    Example:
        >>> orchestrator = DisasterRecoveryOrchestrator(
        ...     store, MongoDatabase.open, "backups/",
        ...     migrate=CommandStep("migrate", "npm run migrate:up"),
        ...     verify=CommandStep("verify", "npm run verify"),
        ...     notifier=Notifier(config.alerts),
        ... )
        >>> run = await orchestrator.run("mongodb://dr-host:27017/app")
    """

    def __init__(
        self,
        store: ObjectStore,
        open_database: DatabaseFactory,
        prefix: str,
        migrate: Optional[RecoveryStep],
        verify: Optional[RecoveryStep],
        notifier: Optional[Notifier] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        spool_memory: int = DEFAULT_SPOOL_MEMORY,
    ) -> None:
        self._store = store
        self._spool_memory = spool_memory
        self._open_database = open_database
        self._prefix = prefix
        self._migrate = migrate
        self._verify = verify
        self._notifier = notifier
        self._batch_size = batch_size

    async def run(
        self,
        target_uri: str,
        dry_run: bool = False,
        timeout: Optional[float] = None,
    ) -> DisasterRecoveryRun:
        """Run disaster recovery against target_uri.

        Args:
            target_uri: Database to rebuild
            dry_run: Stop after selecting the backup
            timeout: Deadline in seconds for the whole run

        Returns:
            The completed run record

        Raises:
            ConfigurationError: If a step is missing for a real run
            OperationTimeoutError: If the deadline expired; .report holds the failed run
            DocVaultError: On any step failure; .report holds the failed run
        """
        if not dry_run and (self._migrate is None or self._verify is None):
            raise ConfigurationError(
                "DR_MIGRATE_COMMAND and DR_VERIFY_COMMAND are required for disaster recovery",
                setting="DR_MIGRATE_COMMAND" if self._migrate is None else "DR_VERIFY_COMMAND",
            )
        run = DisasterRecoveryRun(target=redact_uri(target_uri) or "", dry_run=dry_run)
        try:
            await asyncio.wait_for(self._advance(run, target_uri), timeout=timeout)
        except asyncio.TimeoutError as e:
            error = OperationTimeoutError(
                f"Disaster recovery timed out after {timeout}s",
                timeout=timeout,
            )
            await self._fail(run, error)
            raise error from e
        except asyncio.CancelledError:
            self._mark_failed(run, "cancelled")
            raise
        except Exception as e:
            await self._fail(run, e)
            raise

        if dry_run:
            logger.info("Dry run: stopping after backup selection", extra={"key": run.backup_key})
            return run

        logger.info(
            "Disaster recovery completed",
            extra={"target": run.target, "key": run.backup_key, "collections": len(run.restore_counts)},
        )
        await self._alert_success(run)
        return run

    async def _advance(self, run: DisasterRecoveryRun, target_uri: str) -> None:
        await self._select(run)
        if run.dry_run:
            run.state = RunState.COMPLETED
            run.completed_at = datetime.now(timezone.utc)
            return

        await self._restore(run, target_uri)

        run.state = RunState.MIGRATING
        await self._migrate(target_uri)
        run.migrate_status = StepStatus.SUCCESS

        run.state = RunState.VERIFYING
        await self._verify(target_uri)
        run.verify_status = StepStatus.SUCCESS

        run.state = RunState.COMPLETED
        run.completed_at = datetime.now(timezone.utc)

    async def _fail(self, run: DisasterRecoveryRun, error: Exception) -> None:
        self._mark_failed(run, str(error))
        logger.error(
            "Disaster recovery failed",
            extra={"target": run.target, "step": run.failed_step, "error": run.error},
        )
        await self._alert_failure(run)
        if isinstance(error, DocVaultError):
            error.report = run

    async def _select(self, run: DisasterRecoveryRun) -> None:
        latest = await select_latest_backup(self._store, self._prefix)
        run.backup_key = latest.key
        run.backup_size = latest.size
        logger.info("Selected backup for recovery", extra={"key": latest.key, "size": latest.size})

    async def _restore(self, run: DisasterRecoveryRun, target_uri: str) -> None:
        run.state = RunState.RESTORING
        db = await self._open_database(target_uri)
        report = RestoreReport()
        try:
            await restore_archive(
                self._store.download(run.backup_key),
                db,
                batch_size=self._batch_size,
                report=report,
                spool_memory=self._spool_memory,
            )
        finally:
            run.restore_counts = dict(report.collections)
            run.rejected = dict(report.rejected)
            await db.close()

        if not report.complete:
            raise DatabaseError(
                f"Restore rejected {sum(report.rejected.values())} document(s)",
                collection=next(iter(report.rejected)),
            )
        run.restore_status = StepStatus.SUCCESS

    def _mark_failed(self, run: DisasterRecoveryRun, error: str) -> None:
        step = {
            RunState.RESTORING: "restore",
            RunState.MIGRATING: "migrate",
            RunState.VERIFYING: "verify",
        }.get(run.state, "select")
        if step == "restore":
            run.restore_status = StepStatus.FAILED
        elif step == "migrate":
            run.migrate_status = StepStatus.FAILED
        elif step == "verify":
            run.verify_status = StepStatus.FAILED
        run.failed_step = step
        run.error = error
        run.state = RunState.FAILED
        run.failed_at = datetime.now(timezone.utc)

    async def _alert_success(self, run: DisasterRecoveryRun) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify_event(
            f"Disaster recovery completed for {run.target}",
            {
                "backupKey": run.backup_key,
                "collectionsRestored": len(run.restore_counts),
                "restoreCounts": dict(run.restore_counts),
            },
            icon="\N{WHITE HEAVY CHECK MARK}",
        )

    async def _alert_failure(self, run: DisasterRecoveryRun) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify_event(
            f"Disaster recovery failed for {run.target}",
            {
                "backupKey": run.backup_key,
                "failedStep": run.failed_step,
                "error": run.error,
                "restoreStatus": run.restore_status.value,
                "migrateStatus": run.migrate_status.value,
                "verifyStatus": run.verify_status.value,
            },
            icon="\N{POLICE CARS REVOLVING LIGHT}",
        )
