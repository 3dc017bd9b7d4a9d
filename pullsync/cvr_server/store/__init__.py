"""
Store module for pullsync.

This module handles all storage access of a pull:
- Connection settings and exclusive transactions (Database)
- Visible row versions and paged row fetches per table
- CVR snapshots and the client group registry

Invariants:
    - Every read and write of one pull shares one transaction
    - Lock contention surfaces as TransactionConflictError
"""

from .cvr_store import ClientGroup, CvrSnapshot, CvrStore
from .database import Database
from .rows import SyncRow, fetch_rows, normalize_version, scan_row_versions

__all__ = [
    "Database",
    "ClientGroup",
    "CvrSnapshot",
    "CvrStore",
    "SyncRow",
    "fetch_rows",
    "normalize_version",
    "scan_row_versions",
]
