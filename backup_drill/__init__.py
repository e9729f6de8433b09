"""Backup Drill - PostgreSQL backups with scheduled restore verification.

Two long-running services share this package:
- backup: pg_dump -> gzip -> optional encryption -> object storage, with retention pruning
- verify: download the newest artifact, restore it into a throwaway database, run checks, drop it

Run either with ``backup-drill backup`` / ``backup-drill verify`` (see ``backup-drill --help``).
"""

__version__ = "0.1.0"
