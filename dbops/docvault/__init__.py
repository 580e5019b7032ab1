"""
DocVault - backup, restore and disaster recovery for document databases.

This package streams an entire document database to compressed archives
in object storage and rebuilds databases from those archives:

    ┌──────────┐  cursor   ┌────────┐  chunks  ┌──────────┐
    │ MongoDB  │──────────▶│  ZIP   │─────────▶│    S3    │
    │ (source) │  (codec)  │ writer │  (queue) │ multipart│
    └──────────┘           └────────┘          └────┬─────┘
                                                    │ download
    ┌──────────┐  batches  ┌────────┐  spool        ▼
    │ MongoDB  │◀──────────│  ZIP   │◀──────────────┘
    │ (target) │  (codec)  │ reader │
    └──────────┘           └────────┘

On top of that sit retention enforcement, backup verification into a
disposable database, and a disaster-recovery run
(select → restore → migrate → verify → alert).

Invariants:
    - Every backup is a full logical export; archives are immutable
    - Restore drops each target collection before inserting (idempotent)
    - Peak memory is bounded by one insert batch plus one I/O chunk
    - A corrupt line aborts the restore, it is never skipped

How to change safely:
    - The archive layout (<collection>.jsonl, one document per line) is
      read by every older restore; only change it additively
    - Keep the Extended JSON mode canonical so numeric widths survive
"""

from ._version import __version__

__all__ = ["__version__"]
