"""
SQLite database access for pullsync.

This module owns the connection settings and transaction boundaries used by
every pull, and creates the sync bookkeeping tables:

    replicache_client_group:
        - id TEXT PRIMARY KEY
        - actor TEXT (canonical JSON of the bound actor)
        - cvr_version INTEGER
        - client_version INTEGER
        - time_created INTEGER (Unix ms)
        - time_updated INTEGER (Unix ms)

    replicache_client:
        - id TEXT PRIMARY KEY
        - client_group_id TEXT
        - mutation_id INTEGER
        - client_version INTEGER
        - INDEX on (client_group_id, client_version)

    replicache_cvr:
        - client_group_id TEXT
        - id INTEGER (the CVR version)
        - data TEXT (JSON map of sync key -> row version)
        - client_version INTEGER
        - time_created INTEGER (Unix ms)
        - PRIMARY KEY (client_group_id, id)

Invariants:
    - One connection per transaction, closed afterwards
    - Transactions start with BEGIN IMMEDIATE: the write lock is held for
      the whole pull and every read sees one consistent snapshot
    - Any exception, including task cancellation, rolls back
    - Lock and busy failures surface as TransactionConflictError

How to change safely:
    - Schema changes must be backward compatible (CREATE IF NOT EXISTS)
    - Keep all pull reads and writes inside transaction()
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import TransactionConflictError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_LOCK_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def is_lock_error(error: sqlite3.OperationalError) -> bool:
    """Whether an OperationalError came from lock contention."""
    message = str(error).lower()
    return any(text in message for text in _LOCK_MESSAGES)


class Database:
    """SQLite database holding synced tables and sync bookkeeping.

    Thread safety:
        Each transaction opens its own connection.
        SQLite serializes writers; WAL mode lets readers proceed.

    Example:
        >>> db = Database("/var/lib/pullsync/sync.db")
        >>> db.initialize()
        >>> with db.transaction() as conn:
        ...     conn.execute("SELECT 1")
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the database.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long to wait for the write lock
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection in autocommit mode."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, label: str | None = None) -> Iterator[sqlite3.Connection]:
        """Run a block inside one exclusive transaction.

        Args:
            label: Identifier attached to conflict errors and logs

        Yields:
            Connection with an open transaction

        Raises:
            TransactionConflictError: If the lock could not be acquired or
                the transaction was aborted by contention
        """
        with self.connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if is_lock_error(e):
                    raise TransactionConflictError(
                        f"Could not acquire write lock: {e}", client_group_id=label
                    ) from e
                raise

            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                if is_lock_error(e):
                    raise TransactionConflictError(
                        f"Transaction aborted: {e}", client_group_id=label
                    ) from e
                raise
            except BaseException:
                conn.execute("ROLLBACK")
                logger.debug("Rolled back transaction", extra={"label": label})
                raise

    def initialize(self) -> None:
        """Create the sync bookkeeping tables if missing."""
        with self.connect() as conn:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS replicache_client_group (
                    id TEXT NOT NULL PRIMARY KEY,
                    actor TEXT NOT NULL,
                    cvr_version INTEGER NOT NULL DEFAULT 0,
                    client_version INTEGER NOT NULL DEFAULT 0,
                    time_created INTEGER NOT NULL,
                    time_updated INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS replicache_client (
                    id TEXT NOT NULL PRIMARY KEY,
                    client_group_id TEXT NOT NULL,
                    mutation_id INTEGER NOT NULL DEFAULT 0,
                    client_version INTEGER NOT NULL DEFAULT 0
                );

                CREATE INDEX IF NOT EXISTS idx_client_group_version
                    ON replicache_client(client_group_id, client_version);

                CREATE TABLE IF NOT EXISTS replicache_cvr (
                    client_group_id TEXT NOT NULL,
                    id INTEGER NOT NULL,
                    data TEXT NOT NULL DEFAULT '{{}}',
                    client_version INTEGER NOT NULL DEFAULT 0,
                    time_created INTEGER NOT NULL,
                    PRIMARY KEY (client_group_id, id)
                );

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES ({SCHEMA_VERSION}, strftime('%s', 'now') * 1000);
            """)
        logger.info(f"Initialized sync database: {self.path}")
