"""
Row version source for pullsync.

For one registered table and one actor, this module answers two questions
inside the pull's transaction:
- which rows are visible, under which sync key, at which version
  (scan_row_versions)
- what are the full contents of a given set of those rows
  (fetch_rows, paged by id)

Visibility is the conjunction of:
- the tenant predicate (tenant members only, exact match on the table's
  tenant column)
- the table strategy's extra predicate for the actor kind, if any

Invariants:
    - Versions are epoch milliseconds
    - Rows without a usable last-modified timestamp are not syncable and
      are skipped (logged), never fatal to the pull
    - fetch_rows applies the same tenant scoping as scan_row_versions
    - Keys come from the table strategy (TableDef.key_for), never from SQL
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from ..actor import Actor, ActorKind
from ..errors import MalformedRowError
from ..tables.registry import TableDef

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_PAGE_SIZE = 10_000

# fromisoformat before 3.11 only takes 3 or 6 fractional digits
_FRACTION = re.compile(r"\.(\d+)")


@dataclass(frozen=True)
class SyncRow:
    """Visible row as seen by the diff.

    Attributes:
        table: Registered table name
        id: Row identifier
        key: Sync key
        version: Last modification, epoch milliseconds
    """

    table: str
    id: Any
    key: str
    version: int


def normalize_version(table: str, row_id: Any, value: Any) -> int:
    """Normalize a last-modified value to epoch milliseconds.

    Integers are taken as epoch milliseconds already; strings are parsed as
    ISO-8601 (naive values are UTC).

    Raises:
        MalformedRowError: If the value is missing or unparsable
    """
    if isinstance(value, bool) or value is None:
        raise MalformedRowError(table, row_id, value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], text, count=1)
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedRowError(table, row_id, value) from None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - EPOCH) // timedelta(milliseconds=1)
    raise MalformedRowError(table, row_id, value)


def _scope_clauses(table: TableDef, actor: Actor) -> tuple[str, list[str], list[Any]]:
    """Build joins, WHERE clauses and params scoping a table to an actor."""
    joins = ""
    clauses: list[str] = []
    params: list[Any] = []

    if actor.kind is ActorKind.TENANT_MEMBER and table.tenant_column:
        clauses.append(f"t.{table.tenant_column} = ?")
        params.append(actor.tenant_id)

    extra = table.filter_for(actor)
    if extra is not None:
        joins = extra.joins
        clauses.append(f"({extra.clause})")
        params.extend(extra.params)

    return joins, clauses, params


def scan_row_versions(conn: sqlite3.Connection, table: TableDef, actor: Actor) -> list[SyncRow]:
    """List the visible rows of a table with their keys and versions.

    Args:
        conn: Connection with the pull's transaction open
        table: Table strategy
        actor: Pulling actor

    Returns:
        Syncable rows; malformed rows are logged and left out
    """
    joins, clauses, params = _scope_clauses(table, actor)
    distinct = "DISTINCT " if joins else ""
    scope = "".join(
        f", t.{column} AS scope_{i}" for i, column in enumerate(table.scope_columns)
    )
    query = (
        f"SELECT {distinct}t.{table.id_column} AS id, "
        f"t.{table.version_column} AS version{scope} "
        f"FROM {table.table} t {joins}"
    )
    if clauses:
        query += " WHERE " + " AND ".join(clauses)

    rows: list[SyncRow] = []
    skipped = 0
    for record in conn.execute(query, params):
        try:
            version = normalize_version(table.name, record["id"], record["version"])
        except MalformedRowError as e:
            skipped += 1
            logger.warning(e.message, extra={"table": table.name, "id": record["id"]})
            continue
        key = table.key_for(
            {column: record[f"scope_{i}"] for i, column in enumerate(table.scope_columns)}
        )
        rows.append(SyncRow(table=table.name, id=record["id"], key=key, version=version))

    logger.debug(
        f"Scanned {table.name}",
        extra={"table": table.name, "rows": len(rows), "skipped": skipped},
    )
    return rows


def fetch_rows(
    conn: sqlite3.Connection,
    table: TableDef,
    actor: Actor,
    ids: Sequence[Any],
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Iterator[list[dict[str, Any]]]:
    """Fetch full rows for a set of ids, one page at a time, ordered by id.

    The id set travels as a single JSON parameter so page size is not
    bounded by SQLite's variable limit.

    Args:
        conn: Connection with the pull's transaction open
        table: Table strategy
        actor: Pulling actor (tenant members are re-scoped by tenant)
        ids: Row ids to fetch
        page_size: Rows per page

    Yields:
        Pages of rows as dictionaries; the last page is shorter than
        page_size (possibly empty)
    """
    if page_size < 1:
        raise ValueError("page_size must be positive")

    clauses = [f"t.{table.id_column} IN (SELECT value FROM json_each(?))"]
    params: list[Any] = [json.dumps(list(ids))]
    if actor.kind is ActorKind.TENANT_MEMBER and table.tenant_column:
        clauses.append(f"t.{table.tenant_column} = ?")
        params.append(actor.tenant_id)

    last_id: Any = None
    while True:
        page_clauses = list(clauses)
        page_params = list(params)
        if last_id is not None:
            page_clauses.append(f"t.{table.id_column} > ?")
            page_params.append(last_id)
        page_params.append(page_size)

        logger.debug(
            f"Fetching {table.name}",
            extra={"table": table.name, "after": last_id, "limit": page_size},
        )
        cursor = conn.execute(
            f"SELECT t.* FROM {table.table} t WHERE {' AND '.join(page_clauses)} "
            f"ORDER BY t.{table.id_column} LIMIT ?",
            page_params,
        )
        page = [dict(row) for row in cursor.fetchall()]
        yield page

        if len(page) < page_size:
            break
        last_id = page[-1][table.id_column]
