"""
DocVault command-line entry point.

Usage:
    docvault backup [--prefix backups/] [--tag nightly]
    docvault restore <backup-key> [--target-uri mongodb://...]
    docvault verify [<backup-key>]
    docvault disaster-recover [--target-uri mongodb://...] [--dry-run]
    docvault list [--prefix backups/]
    docvault retention [--prefix backups/] [--keep 7]

Every command prints a JSON report to stdout, also on failure.

Exit codes:
    0  success
    1  the operation failed (report carries "error")
    2  configuration error, nothing was attempted
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Dict, List, Optional

import json_log_formatter

from . import operations
from .alerts import Notifier
from .config import DocVaultConfig, ObservabilityConfig
from .database import DatabaseFactory, MongoDatabase
from .errors import ConfigurationError, DocVaultError, OperationTimeoutError
from .storage import ObjectStore, create_object_store

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def setup_logging(config: ObservabilityConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Logs go to stderr so stdout carries only the JSON report.
    """
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    for name in ("botocore", "aiobotocore", "pymongo", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docvault",
        description="MongoDB backup, restore and disaster recovery on S3",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Abort the operation after this many seconds",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    backup_parser = subparsers.add_parser("backup", help="Back up the database to S3")
    backup_parser.add_argument("--prefix", help="Key prefix (default: BACKUP_PREFIX)")
    backup_parser.add_argument("--tag", help="Label appended to the backup key")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore a backup into a database")
    restore_parser.add_argument("backup_key", help="Key of the backup to restore")
    restore_parser.add_argument(
        "--target-uri",
        help="Target database URI (default: TARGET_MONGO_URI or MONGO_URI)",
    )

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Restore a backup into a scratch database")
    verify_parser.add_argument("backup_key", nargs="?", help="Backup key (default: latest)")
    verify_parser.add_argument("--prefix", help="Key prefix used to find the latest backup")

    # disaster-recover command
    dr_parser = subparsers.add_parser(
        "disaster-recover",
        help="Restore the latest backup, migrate and verify",
    )
    dr_parser.add_argument(
        "--target-uri",
        help="Target database URI (default: DR_TARGET_URI or MONGO_URI)",
    )
    dr_parser.add_argument("--dry-run", action="store_true", help="Only select the backup")

    # list command
    list_parser = subparsers.add_parser("list", help="List backups, newest first")
    list_parser.add_argument("--prefix", help="Key prefix (default: BACKUP_PREFIX)")

    # retention command
    retention_parser = subparsers.add_parser("retention", help="Delete backups beyond retention")
    retention_parser.add_argument("--prefix", help="Key prefix (default: BACKUP_PREFIX)")
    retention_parser.add_argument(
        "--keep",
        type=int,
        help="Backups to keep (default: BACKUP_RETENTION; 0 disables)",
    )

    return parser


async def execute(
    args: argparse.Namespace,
    config: DocVaultConfig,
    store: Optional[ObjectStore] = None,
    open_database: Optional[DatabaseFactory] = None,
    notifier: Optional[Notifier] = None,
) -> Dict[str, Any]:
    """Run the parsed command and return its report.

    The store is connected for the duration of the command; one created
    here is also closed here.
    """
    owns_store = store is None
    if store is None:
        store = create_object_store(config.s3)
    if open_database is None:
        open_database = MongoDatabase.open

    await store.connect()
    try:
        if args.command == "backup":
            return await operations.run_backup(
                config, store, open_database, prefix=args.prefix, tag=args.tag
            )
        if args.command == "restore":
            return await operations.run_restore(
                config, store, open_database, args.backup_key, target_uri=args.target_uri
            )
        if args.command == "verify":
            return await operations.run_verify(
                config, store, open_database, backup_key=args.backup_key, prefix=args.prefix
            )
        if args.command == "disaster-recover":
            return await operations.run_disaster_recovery(
                config,
                store,
                open_database,
                target_uri=args.target_uri,
                dry_run=args.dry_run,
                notifier=notifier,
                timeout=args.timeout,
            )
        if args.command == "list":
            return await operations.list_backups(config, store, prefix=args.prefix)
        if args.command == "retention":
            return await operations.run_retention(config, store, prefix=args.prefix, keep=args.keep)
        raise ConfigurationError(f"Unknown command: {args.command}", setting="command")
    finally:
        if owns_store:
            await store.close()


def exit_code_for(command: str, report: Dict[str, Any]) -> int:
    """Exit code of a command that returned a report."""
    if command == "restore" and not report.get("complete", True):
        return EXIT_FAILED
    if command == "verify" and not report.get("success", False):
        return EXIT_FAILED
    if command == "disaster-recover" and report.get("status") != "completed":
        return EXIT_FAILED
    return EXIT_OK


def emit(report: Dict[str, Any]) -> None:
    print(json.dumps(report, indent=2, default=str))


def error_report(error: BaseException) -> Dict[str, Any]:
    report = getattr(error, "report", None)
    if isinstance(report, dict):
        return report
    data: Dict[str, Any] = {"error": str(error)}
    if isinstance(error, DocVaultError):
        data["code"] = error.code
        data.update({k: v for k, v in error.details.items() if v is not None})
    else:
        data["code"] = "UNEXPECTED_ERROR"
        data["type"] = type(error).__name__
    return data


async def _with_timeout(operation: Awaitable[Dict[str, Any]], timeout: Optional[float]) -> Dict[str, Any]:
    if timeout is None:
        return await operation
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(f"Timed out after {timeout}s", timeout=timeout) from e


def run(argv: Optional[List[str]] = None, **collaborators: Any) -> int:
    """Parse argv, run the command, print the report. Returns the exit code.

    Keyword arguments are passed to execute() (store, open_database, notifier).
    """
    args = build_parser().parse_args(argv)

    try:
        config = DocVaultConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        emit(error_report(e))
        return EXIT_CONFIG

    setup_logging(config.observability, verbose=args.verbose)

    try:
        config.validate()
        config.log_config()
        # disaster-recover applies the deadline itself
        deadline = None if args.command == "disaster-recover" else args.timeout
        report = asyncio.run(_with_timeout(execute(args, config, **collaborators), deadline))
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e), "setting": e.details.get("setting")})
        emit(error_report(e))
        return EXIT_CONFIG
    except DocVaultError as e:
        logger.error(f"docvault {args.command} failed", extra={"error": str(e), "code": e.code})
        emit(error_report(e))
        return EXIT_FAILED
    except Exception as e:
        logger.exception(f"docvault {args.command} failed unexpectedly")
        emit(error_report(e))
        return EXIT_FAILED

    emit(report)
    return exit_code_for(args.command, report)


def main() -> None:
    """Main entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
