"""
Operator-facing operations.

Each operation wires explicit collaborators (object store, database
factory, notifier) into one pipeline and returns a JSON-shaped report:

    run_backup             database ─▶ archive ─▶ upload, then retention
    run_restore            download ─▶ archive ─▶ database
    run_verify             latest/given backup ─▶ disposable database
    run_disaster_recovery  select ─▶ restore ─▶ migrate ─▶ verify
    list_backups           archives under a prefix, newest first
    run_retention          retention enforcement on its own

Invariants:
    - Errors leave with .report set to the best-available report dict
    - Database handles opened here are closed here
    - Backup export and upload run concurrently; if either fails the
      other is cancelled and no object is left behind

How to change safely:
    - Keep collaborators injectable; tests pass in-memory implementations
    - Report keys are consumed by operators' tooling, do not rename them
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .alerts import Notifier
from .archive import ARCHIVE_CONTENT_TYPE, ArchiveWriter
from .backup import catalog, enforce_retention, restore_archive, start_export
from .config import DocVaultConfig, normalize_prefix, redact_uri
from .database import DatabaseFactory
from .errors import DocVaultError
from .recovery import CommandStep, DisasterRecoveryOrchestrator, RecoveryStep, VerificationRunner
from .storage import ObjectStore, generate_backup_key

logger = logging.getLogger(__name__)


def _report_dict(report: Any) -> Optional[Dict[str, Any]]:
    if report is None or isinstance(report, dict):
        return report
    return report.to_dict()


def _attach(error: DocVaultError, report: Dict[str, Any]) -> None:
    """Merge partial progress into the error's report."""
    merged = dict(report)
    merged.update(_report_dict(error.report) or {})
    merged["error"] = str(error)
    error.report = merged


async def _join(tasks: Sequence["asyncio.Task[Any]"]) -> List[Any]:
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def run_backup(
    config: DocVaultConfig,
    store: ObjectStore,
    open_database: DatabaseFactory,
    prefix: Optional[str] = None,
    tag: Optional[str] = None,
) -> Dict[str, Any]:
    """Back up the primary database and enforce retention.

    Args:
        config: Loaded configuration
        store: Object store holding the backups
        open_database: Database factory (e.g. MongoDatabase.open)
        prefix: Key prefix (default: BACKUP_PREFIX)
        tag: Optional label appended to the key

    Returns:
        Backup report

    Raises:
        DatabaseError / ArchiveError / StorageError: .report holds progress
    """
    prefix = normalize_prefix(prefix if prefix is not None else config.backup.prefix)
    started = datetime.now(timezone.utc)
    key = generate_backup_key(prefix, started, tag=tag)
    partial: Dict[str, Any] = {"backupKey": key, "bucket": store.bucket, "prefix": prefix}

    logger.info(
        "Starting backup",
        extra={"bucket": store.bucket, "key": key, "source": redact_uri(config.database.uri)},
    )

    try:
        db = await open_database(config.database.uri)
        try:
            writer = ArchiveWriter(
                chunk_size=config.backup.chunk_size,
                compression_level=config.backup.compression_level,
            )
            writer, export_task = start_export(db, writer, batch_size=config.backup.batch_size)
            upload_task = asyncio.create_task(
                store.upload(key, writer.stream(), content_type=ARCHIVE_CONTENT_TYPE)
            )
            summary, upload = await _join([export_task, upload_task])
        finally:
            await db.close()

        partial.update(
            sizeBytes=upload.size_bytes,
            contentHash=upload.content_hash,
            collections=dict(summary.collections),
            diagnostics=list(summary.diagnostics),
        )
        logger.info(
            "MongoDB backup uploaded",
            extra={"bucket": store.bucket, "key": key, "size_bytes": upload.size_bytes},
        )

        retention = await enforce_retention(store, prefix, config.backup.retention)
    except DocVaultError as e:
        _attach(e, partial)
        raise

    return {
        "backupKey": key,
        "bucket": store.bucket,
        "prefix": prefix,
        "sizeBytes": upload.size_bytes,
        "contentHash": upload.content_hash,
        "collections": dict(summary.collections),
        "retention": config.backup.retention,
        "retentionResult": retention.to_dict() if retention.enabled else None,
        "diagnostics": list(summary.diagnostics),
        "generatedAt": started.isoformat(),
    }


async def run_restore(
    config: DocVaultConfig,
    store: ObjectStore,
    open_database: DatabaseFactory,
    backup_key: str,
    target_uri: Optional[str] = None,
) -> Dict[str, Any]:
    """Restore backup_key into target_uri (default: TARGET_MONGO_URI or primary).

    The report's "complete" flag is False when the database refused
    documents; the restore itself still ran to the end.
    """
    target_uri = target_uri or config.database.restore_target
    partial: Dict[str, Any] = {
        "backupKey": backup_key,
        "bucket": store.bucket,
        "targetUri": redact_uri(target_uri),
    }
    logger.info("Restoring MongoDB backup", extra=partial)

    try:
        db = await open_database(target_uri)
        try:
            restored = await restore_archive(
                store.download(backup_key),
                db,
                batch_size=config.backup.batch_size,
                spool_memory=config.backup.chunk_size,
            )
        finally:
            await db.close()
    except DocVaultError as e:
        _attach(e, partial)
        raise

    return {**partial, **restored.to_dict(), "complete": restored.complete}


async def run_verify(
    config: DocVaultConfig,
    store: ObjectStore,
    open_database: DatabaseFactory,
    backup_key: Optional[str] = None,
    prefix: Optional[str] = None,
) -> Dict[str, Any]:
    """Verify a backup (latest when backup_key is None) in a disposable database.

    Raises:
        ConfigurationError: If the verify location is the primary database
        NotFoundError: If there is nothing to verify
    """
    runner = VerificationRunner(
        store,
        open_database,
        verify_uri=config.verify_location(),
        prefix=prefix if prefix is not None else config.backup.prefix,
        smoke_collections=config.backup.smoke_collections,
        batch_size=config.backup.batch_size,
        spool_memory=config.backup.chunk_size,
    )
    try:
        report = await runner.verify(backup_key)
    except DocVaultError as e:
        _attach(e, {"backupKey": backup_key, "bucket": store.bucket})
        raise
    return report.to_dict()


def build_recovery_steps(config: DocVaultConfig) -> Dict[str, Optional[RecoveryStep]]:
    """CommandSteps for the configured migrate/verify commands."""
    timeout = config.recovery.step_timeout_seconds
    steps: Dict[str, Optional[RecoveryStep]] = {"migrate": None, "verify": None}
    if config.recovery.migrate_command:
        steps["migrate"] = CommandStep("migrate", config.recovery.migrate_command, timeout=timeout)
    if config.recovery.verify_command:
        steps["verify"] = CommandStep("verify", config.recovery.verify_command, timeout=timeout)
    return steps


async def run_disaster_recovery(
    config: DocVaultConfig,
    store: ObjectStore,
    open_database: DatabaseFactory,
    target_uri: Optional[str] = None,
    dry_run: bool = False,
    notifier: Optional[Notifier] = None,
    migrate: Optional[RecoveryStep] = None,
    verify: Optional[RecoveryStep] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """Rebuild target_uri (default: DR_TARGET_URI or primary) from the latest backup.

    Steps not passed in are built from DR_MIGRATE_COMMAND / DR_VERIFY_COMMAND.
    timeout bounds the whole run; on expiry the failed run is still reported
    and alerted.

    Raises:
        ConfigurationError: If a step is missing for a real run
        NotFoundError: If the prefix holds no backups
        OperationTimeoutError: If timeout expired
        DocVaultError: On any step failure
    """
    target_uri = target_uri or config.database.recovery_target
    configured = build_recovery_steps(config)
    orchestrator = DisasterRecoveryOrchestrator(
        store,
        open_database,
        prefix=config.backup.prefix,
        migrate=migrate or configured["migrate"],
        verify=verify or configured["verify"],
        notifier=notifier if notifier is not None else Notifier(config.alerts),
        batch_size=config.backup.batch_size,
        spool_memory=config.backup.chunk_size,
    )
    try:
        run = await orchestrator.run(target_uri, dry_run=dry_run, timeout=timeout)
    except DocVaultError as e:
        _attach(e, {"targetUri": redact_uri(target_uri), "dryRun": dry_run})
        raise
    return run.to_dict()


async def list_backups(
    config: DocVaultConfig,
    store: ObjectStore,
    prefix: Optional[str] = None,
) -> Dict[str, Any]:
    """Backups under prefix, newest first."""
    prefix = normalize_prefix(prefix if prefix is not None else config.backup.prefix)
    backups = await catalog.list_backups(store, prefix)
    return {
        "bucket": store.bucket,
        "prefix": prefix,
        "count": len(backups),
        "backups": [obj.to_dict() for obj in backups],
    }


async def run_retention(
    config: DocVaultConfig,
    store: ObjectStore,
    prefix: Optional[str] = None,
    keep: Optional[int] = None,
) -> Dict[str, Any]:
    """Enforce retention without taking a backup."""
    prefix = normalize_prefix(prefix if prefix is not None else config.backup.prefix)
    keep = config.backup.retention if keep is None else keep
    try:
        result = await enforce_retention(store, prefix, keep)
    except DocVaultError as e:
        _attach(e, {"bucket": store.bucket, "prefix": prefix, "retention": keep})
        raise
    return {
        "bucket": store.bucket,
        "prefix": prefix,
        "retention": keep,
        "enabled": result.enabled,
        "retentionResult": result.to_dict() if result.enabled else None,
        "deletedKeys": list(result.deleted_keys),
    }
