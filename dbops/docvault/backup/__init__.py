"""
Backup engine for DocVault.

- exporter: database -> archive stream
- restorer: archive stream -> database (drop-and-replace)
- retention: prune old archives under a prefix
"""

from .catalog import list_backups, select_latest_backup
from .exporter import ExportSummary, export_database, start_export
from .restorer import RestoreReport, restore_archive, restore_entry
from .retention import RetentionResult, enforce_retention

__all__ = [
    "list_backups",
    "select_latest_backup",
    "ExportSummary",
    "export_database",
    "start_export",
    "RestoreReport",
    "restore_archive",
    "restore_entry",
    "RetentionResult",
    "enforce_retention",
]
