"""
CVR snapshots and the client group registry.

A Client View Record (CVR) snapshot records which sync keys, at which
versions, a client group's cache held after a committed pull. Snapshots are
immutable once written (a re-used version only has its data replaced) and
are identified by (client_group_id, version); the version is the cookie
handed to the client.

The client group row binds a group to the actor that created it and holds
the group's latest CVR version.

Invariants:
    - Groups are created idempotently and never deleted here
    - The bound actor never changes after creation
    - cvr_version only increases
    - At most `retention` snapshots survive a prune

How to change safely:
    - Snapshot data is a JSON object; keep it readable by older servers
    - Every method takes the caller's connection so that a whole pull
      shares one transaction
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field

from ..actor import Actor

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 10


@dataclass
class ClientGroup:
    """A logical client group.

    Attributes:
        id: Client group identifier
        actor: Actor bound at creation
        cvr_version: Latest committed CVR version
        client_version: Latest client version written by the push path
    """

    id: str
    actor: Actor
    cvr_version: int = 0
    client_version: int = 0


@dataclass
class CvrSnapshot:
    """A stored CVR.

    Attributes:
        client_group_id: Owning client group
        version: CVR version (the cookie)
        data: Sync key -> row version (epoch ms)
        client_version: Group client version when the snapshot was taken
    """

    client_group_id: str
    version: int
    data: dict[str, int] = field(default_factory=dict)
    client_version: int = 0


class CvrStore:
    """Reads and writes client groups and CVR snapshots.

    Example:
        >>> store = CvrStore(retention=10)
        >>> with db.transaction() as conn:
        ...     group = store.get_client_group(conn, "cg_1")
        ...     old = store.get_snapshot(conn, "cg_1", 3)
    """

    def __init__(self, retention: int = DEFAULT_RETENTION) -> None:
        """Initialize the store.

        Args:
            retention: Number of most recent snapshots kept per group
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.retention = retention

    def ensure_client_group(self, conn: sqlite3.Connection, group_id: str, actor: Actor) -> bool:
        """Create the group bound to actor if it does not exist.

        Returns:
            True if the group was created by this call
        """
        now = int(time.time() * 1000)
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO replicache_client_group
                (id, actor, cvr_version, client_version, time_created, time_updated)
            VALUES (?, ?, 0, 0, ?, ?)
            """,
            (group_id, actor.to_json(), now, now),
        )
        created = cursor.rowcount > 0
        if created:
            logger.info(
                "Created client group",
                extra={"client_group_id": group_id, "actor_type": actor.kind.value},
            )
        return created

    def get_client_group(self, conn: sqlite3.Connection, group_id: str) -> ClientGroup | None:
        """Read a group row.

        Called inside a BEGIN IMMEDIATE transaction, the read happens under
        the database write lock, so no other pull can change the row until
        the transaction ends.
        """
        row = conn.execute(
            """
            SELECT id, actor, cvr_version, client_version
            FROM replicache_client_group WHERE id = ?
            """,
            (group_id,),
        ).fetchone()
        if not row:
            return None

        return ClientGroup(
            id=row["id"],
            actor=Actor.from_json(row["actor"]),
            cvr_version=row["cvr_version"],
            client_version=row["client_version"],
        )

    def set_cvr_version(self, conn: sqlite3.Connection, group_id: str, version: int) -> None:
        conn.execute(
            """
            UPDATE replicache_client_group SET cvr_version = ?, time_updated = ?
            WHERE id = ?
            """,
            (version, int(time.time() * 1000), group_id),
        )

    def get_snapshot(
        self, conn: sqlite3.Connection, group_id: str, version: int | None
    ) -> CvrSnapshot | None:
        """Load the snapshot a cookie refers to.

        Args:
            conn: Database connection
            group_id: Client group identifier
            version: Cookie presented by the client (None on first pull)

        Returns:
            CvrSnapshot or None if the cookie names no stored snapshot
        """
        if version is None:
            return None

        row = conn.execute(
            """
            SELECT data, client_version FROM replicache_cvr
            WHERE client_group_id = ? AND id = ?
            """,
            (group_id, version),
        ).fetchone()
        if not row:
            return None

        return CvrSnapshot(
            client_group_id=group_id,
            version=version,
            data=json.loads(row["data"]),
            client_version=row["client_version"],
        )

    def put_snapshot(self, conn: sqlite3.Connection, snapshot: CvrSnapshot) -> None:
        """Insert a snapshot; an existing version only has its data replaced."""
        conn.execute(
            """
            INSERT INTO replicache_cvr (client_group_id, id, data, client_version, time_created)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (client_group_id, id) DO UPDATE SET data = excluded.data
            """,
            (
                snapshot.client_group_id,
                snapshot.version,
                json.dumps(snapshot.data, separators=(",", ":")),
                snapshot.client_version,
                int(time.time() * 1000),
            ),
        )

    def prune_snapshots(self, conn: sqlite3.Connection, group_id: str, latest_version: int) -> int:
        """Delete snapshots that fell out of the retention window.

        Keeps versions in (latest_version - retention, latest_version].

        Returns:
            Number of snapshots deleted
        """
        cursor = conn.execute(
            "DELETE FROM replicache_cvr WHERE client_group_id = ? AND id <= ?",
            (group_id, latest_version - self.retention),
        )
        if cursor.rowcount:
            logger.debug(
                "Pruned CVR snapshots",
                extra={"client_group_id": group_id, "deleted": cursor.rowcount},
            )
        return cursor.rowcount

    def list_snapshot_versions(self, conn: sqlite3.Connection, group_id: str) -> list[int]:
        cursor = conn.execute(
            "SELECT id FROM replicache_cvr WHERE client_group_id = ? ORDER BY id",
            (group_id,),
        )
        return [row[0] for row in cursor.fetchall()]
