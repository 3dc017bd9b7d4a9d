"""
Shared fixtures for pullsync tests.

Integration tests run against real SQLite files in a temporary directory,
with the console table catalog created.
"""

import sqlite3
import tempfile
from pathlib import Path
from typing import Any

import pytest

from pullsync.cvr_server.actor import Actor
from pullsync.cvr_server.store.database import Database
from pullsync.cvr_server.tables.catalog import create_catalog_schema, default_registry

WORKSPACE_ID = "ws_acme"
OTHER_WORKSPACE_ID = "ws_globex"


def insert_row(conn: sqlite3.Connection, table: str, **values: Any) -> None:
    """Insert a row into a catalog table, filling the timestamp columns."""
    values.setdefault("time_created", "2024-05-01T12:00:00Z")
    values.setdefault("time_updated", "2024-05-01T12:00:00Z")
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    conn.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
        list(values.values()),
    )


def upsert_client(
    conn: sqlite3.Connection,
    client_id: str,
    group_id: str,
    mutation_id: int,
    client_version: int,
) -> None:
    """Record a client the way the push path does, bumping the group version."""
    conn.execute(
        """
        INSERT INTO replicache_client (id, client_group_id, mutation_id, client_version)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            mutation_id = excluded.mutation_id,
            client_version = excluded.client_version
        """,
        (client_id, group_id, mutation_id, client_version),
    )
    conn.execute(
        "UPDATE replicache_client_group SET client_version = ? WHERE id = ?",
        (client_version, group_id),
    )


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def database(data_dir):
    """Initialized database with the console catalog."""
    db = Database(str(Path(data_dir) / "sync.db"), wal_mode=False, busy_timeout_ms=200)
    db.initialize()
    with db.connect() as conn:
        create_catalog_schema(conn)
    return db


@pytest.fixture
def registry():
    """Frozen console table registry."""
    return default_registry()


@pytest.fixture
def member():
    """Tenant member of the acme workspace."""
    return Actor.tenant_member(WORKSPACE_ID, userID="usr_alice", email="alice@acme.test")


@pytest.fixture
def seeded(database):
    """Database holding one workspace with a user, a stage and an issue."""
    with database.connect() as conn:
        insert_row(conn, "workspace", id=WORKSPACE_ID, slug="acme")
        insert_row(conn, "workspace", id=OTHER_WORKSPACE_ID, slug="globex")
        insert_row(
            conn, "users", id="usr_alice", workspace_id=WORKSPACE_ID, email="alice@acme.test"
        )
        insert_row(
            conn, "users", id="usr_bob", workspace_id=OTHER_WORKSPACE_ID, email="bob@globex.test"
        )
        insert_row(
            conn,
            "stage",
            id="stg_prod",
            workspace_id=WORKSPACE_ID,
            app_id="app_web",
            name="production",
        )
        insert_row(
            conn,
            "issue",
            id="iss_1",
            workspace_id=WORKSPACE_ID,
            stage_id="stg_prod",
            error='{"message": "boom"}',
        )
    return database
