"""
Default table catalog for the console deployment.

This module declares the console's syncable tables: their SQLite schema and
the TableDef strategy each one syncs with. Deployments with a different
table set build their own TableRegistry instead of calling
default_registry().

Every table carries the common columns:
    - id TEXT
    - workspace_id TEXT (tenant column; the workspace table is its own tenant)
    - time_created TEXT (ISO-8601, UTC)
    - time_updated TEXT (ISO-8601, UTC) - the sync version
    - time_deleted TEXT (soft delete marker, NULL when live)

How to change safely:
    - Adding a table: append a TableDef and its columns to CATALOG
    - Scope columns are part of the client's key space; changing them
      makes every client re-download the table
    - Keep DDL additive; existing databases only get missing tables
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any

from ..actor import Actor, ActorKind
from .registry import SqlFilter, TableDef, TableRegistry

MEMBER = ActorKind.TENANT_MEMBER
ACCOUNT = ActorKind.ACCOUNT_HOLDER


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _own_log_searches(actor: Actor) -> SqlFilter:
    return SqlFilter("t.user_id = ?", (actor.properties.get("userID"),))


def _current_month_usage(actor: Actor) -> SqlFilter:
    month_start = _utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return SqlFilter("t.day >= ?", (month_start.strftime("%Y-%m-%d"),))


def _last_day_issue_counts(actor: Actor) -> SqlFilter:
    since = _utcnow().replace(minute=0, second=0, microsecond=0) - timedelta(days=1)
    return SqlFilter("t.hour >= ?", (since.strftime("%Y-%m-%d %H:%M:%S"),))


def _live_issues(actor: Actor) -> SqlFilter:
    return SqlFilter("t.time_deleted IS NULL")


def _account_users(actor: Actor) -> SqlFilter:
    return SqlFilter(
        "t.email = ? AND t.time_deleted IS NULL AND w.time_deleted IS NULL",
        (actor.properties.get("email"),),
        joins="JOIN workspace w ON w.id = t.workspace_id",
    )


def _account_workspaces(actor: Actor) -> SqlFilter:
    return SqlFilter(
        "u.email = ? AND u.time_deleted IS NULL AND t.time_deleted IS NULL",
        (actor.properties.get("email"),),
        joins="JOIN users u ON u.workspace_id = t.id",
    )


def serialize_state_update(row: dict[str, Any]) -> dict[str, Any]:
    """Wire shape of a state update, grouping timing and resource counts."""
    return {
        "id": row["id"],
        "stageID": row["stage_id"],
        "command": row["command"],
        "source": row["source"],
        "errors": row.get("errors"),
        "time": {
            "created": row["time_created"],
            "updated": row["time_updated"],
            "started": row.get("time_started"),
            "completed": row.get("time_completed"),
        },
        "resource": {
            "created": row.get("resource_created"),
            "updated": row.get("resource_updated"),
            "deleted": row.get("resource_deleted"),
            "same": row.get("resource_same"),
        },
    }


# (TableDef, extra column DDL)
CATALOG: list[tuple[TableDef, str]] = [
    (
        TableDef(
            name="workspace",
            tenant_column="id",
            filters={MEMBER: None, ACCOUNT: _account_workspaces},
        ),
        "slug TEXT NOT NULL",
    ),
    (
        TableDef(name="stripe", scope_columns=()),
        "customer_id TEXT, subscription_id TEXT, standing TEXT",
    ),
    (
        TableDef(
            name="user",
            sql_table="users",
            filters={MEMBER: None, ACCOUNT: _account_users},
        ),
        "email TEXT NOT NULL",
    ),
    (TableDef(name="awsAccount", sql_table="aws_account"), "account_id TEXT NOT NULL"),
    (TableDef(name="app"), "name TEXT NOT NULL"),
    (TableDef(name="appRepo", sql_table="app_repo"), "app_id TEXT NOT NULL, repo_id TEXT"),
    (TableDef(name="env"), "stage_id TEXT NOT NULL, env_key TEXT NOT NULL, env_value TEXT"),
    (
        TableDef(name="stage"),
        "app_id TEXT NOT NULL, aws_account_id TEXT, name TEXT NOT NULL, region TEXT",
    ),
    (
        TableDef(name="resource", scope_columns=("stage_id", "id"), json_columns=("metadata",)),
        "stage_id TEXT NOT NULL, type TEXT NOT NULL, urn TEXT, metadata TEXT",
    ),
    (TableDef(name="log_poller"), "stage_id TEXT, log_group TEXT"),
    (
        TableDef(name="log_search", filters={MEMBER: _own_log_searches}),
        "user_id TEXT NOT NULL, log_group TEXT, time_start TEXT, time_end TEXT",
    ),
    (
        TableDef(name="lambdaPayload", sql_table="lambda_payload", json_columns=("payload",)),
        "name TEXT, function_arn TEXT, payload TEXT, creator TEXT",
    ),
    (
        TableDef(name="warning", scope_columns=("stage_id", "type", "id"), json_columns=("data",)),
        "stage_id TEXT NOT NULL, type TEXT NOT NULL, target TEXT, data TEXT",
    ),
    (
        TableDef(
            name="issue",
            scope_columns=("stage_id", "id"),
            filters={MEMBER: _live_issues},
            json_columns=("error",),
        ),
        "stage_id TEXT NOT NULL, group_id TEXT, error TEXT, time_resolved TEXT, time_ignored TEXT",
    ),
    (TableDef(name="issueSubscriber", sql_table="issue_subscriber"), "stage_id TEXT, function_id TEXT"),
    (
        TableDef(
            name="issueCount",
            sql_table="issue_count",
            scope_columns=("group_id", "id"),
            filters={MEMBER: _last_day_issue_counts},
        ),
        "group_id TEXT NOT NULL, hour TEXT NOT NULL, stage_id TEXT, count INTEGER NOT NULL DEFAULT 0",
    ),
    (
        TableDef(name="issueAlert", sql_table="issue_alert", json_columns=("source", "destination")),
        "source TEXT, destination TEXT, time_last_alerted TEXT",
    ),
    (TableDef(name="githubOrg", sql_table="github_org"), "external_org_id INTEGER, login TEXT"),
    (TableDef(name="githubRepo", sql_table="github_repo"), "github_org_id TEXT, name TEXT"),
    (TableDef(name="slackTeam", sql_table="slack_team"), "team_id TEXT, team_name TEXT"),
    (
        TableDef(
            name="usage",
            scope_columns=("stage_id", "id"),
            filters={MEMBER: _current_month_usage},
        ),
        "stage_id TEXT NOT NULL, day TEXT NOT NULL, invocations INTEGER NOT NULL DEFAULT 0",
    ),
    (
        TableDef(
            name="stateUpdate",
            sql_table="state_update",
            scope_columns=("stage_id", "id"),
            projection=serialize_state_update,
            json_columns=("source",),
        ),
        "stage_id TEXT NOT NULL, command TEXT NOT NULL, source TEXT NOT NULL, "
        "time_started TEXT, time_completed TEXT, resource_deleted INTEGER, "
        "resource_created INTEGER, resource_updated INTEGER, resource_same INTEGER, "
        "errors INTEGER",
    ),
    (
        TableDef(
            name="stateResource",
            sql_table="state_resource",
            json_columns=("outputs", "inputs"),
        ),
        "stage_id TEXT NOT NULL, update_id TEXT NOT NULL, type TEXT NOT NULL, "
        "urn TEXT NOT NULL, outputs TEXT NOT NULL, inputs TEXT NOT NULL, "
        "resource_action TEXT NOT NULL, parent TEXT, custom INTEGER NOT NULL DEFAULT 0",
    ),
]


def default_registry() -> TableRegistry:
    """Registry holding every console table, frozen."""
    registry = TableRegistry([table for table, _ in CATALOG])
    registry.freeze()
    return registry


def create_catalog_schema(conn: sqlite3.Connection) -> None:
    """Create the console tables that do not exist yet."""
    statements = []
    for table, columns in CATALOG:
        tenant = "" if table.tenant_column == "id" else "workspace_id TEXT NOT NULL,"
        statements.append(
            f"""
            CREATE TABLE IF NOT EXISTS {table.table} (
                id TEXT NOT NULL PRIMARY KEY,
                {tenant}
                {columns},
                time_created TEXT NOT NULL,
                time_updated TEXT,
                time_deleted TEXT
            );
            """
        )
        if table.tenant_column and table.tenant_column != "id":
            statements.append(
                f"CREATE INDEX IF NOT EXISTS idx_{table.table}_tenant "
                f"ON {table.table}({table.tenant_column}, id);"
            )
    conn.executescript("\n".join(statements))
