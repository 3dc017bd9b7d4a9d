"""
Last-mutation tracking.

Reports, for each client of a group whose version advanced past the one
captured in the client's CVR, the ID of the last mutation the server
applied for it. Clients use this to drop pending mutations.
"""

from __future__ import annotations

import sqlite3


def last_mutation_id_changes(
    conn: sqlite3.Connection,
    group_id: str,
    since_client_version: int,
) -> dict[str, int]:
    """Map client ID -> last applied mutation ID for clients changed since a version.

    Args:
        conn: Database connection (read-only use)
        group_id: Client group identifier
        since_client_version: client_version stored in the old CVR (0 if none)
    """
    cursor = conn.execute(
        """
        SELECT id, mutation_id FROM replicache_client
        WHERE client_group_id = ? AND client_version > ?
        """,
        (group_id, since_client_version),
    )
    return {row["id"]: row["mutation_id"] for row in cursor.fetchall()}
