"""
Patch construction.

Turns a Diff into the ordered list of cache operations sent to a client:

    clear()              - drop everything (first pull for a cookie only)
    put("/init", true)   - marks the cache as initialized, follows clear()
    put(key, value)      - one per changed row, value is the projected row
    del(key)             - one per key that is no longer visible

Changed rows are re-read in id-ordered pages so a large first pull never
materializes a whole table at once.

Invariants:
    - clear() and the init put appear together, first, or not at all
    - Every put key is in the next CVR
    - A row deleted between scan and fetch yields no put; its key stays in
      the next CVR and is deleted by the following pull
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Union

from ..actor import Actor
from ..store.rows import DEFAULT_PAGE_SIZE, fetch_rows
from ..tables.keys import INIT_KEY
from ..tables.registry import TableRegistry
from .diff import Diff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClearOp:
    """Remove every key from the client cache."""

    def to_dict(self) -> dict[str, Any]:
        return {"op": "clear"}


@dataclass(frozen=True)
class PutOp:
    """Set a key in the client cache."""

    key: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"op": "put", "key": self.key, "value": self.value}


@dataclass(frozen=True)
class DelOp:
    """Remove a key from the client cache."""

    key: str

    def to_dict(self) -> dict[str, Any]:
        return {"op": "del", "key": self.key}


PatchOp = Union[ClearOp, PutOp, DelOp]


def initial_ops() -> list[PatchOp]:
    return [ClearOp(), PutOp(INIT_KEY, True)]


def build_patch(
    conn: sqlite3.Connection,
    registry: TableRegistry,
    actor: Actor,
    diff: Diff,
    initial: bool = False,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> list[PatchOp]:
    """Build the patch for a diff.

    Args:
        conn: Connection with the pull's transaction open
        registry: Tables (for projections and scoping)
        actor: Pulling actor
        diff: Result of compute_diff
        initial: Whether the client has no CVR for its cookie
        page_size: Rows fetched per query

    Returns:
        Ordered patch operations
    """
    patch: list[PatchOp] = initial_ops() if initial else []

    for name, rows in diff.to_put.items():
        if not rows:
            continue
        table = registry.get(name)
        keys = {row.id: row.key for row in rows}

        fetched = 0
        for page in fetch_rows(conn, table, actor, list(keys), page_size=page_size):
            for record in page:
                key = keys[record[table.id_column]]
                patch.append(PutOp(key, table.project(record)))
            fetched += len(page)

        if fetched != len(keys):
            logger.debug(
                f"Rows vanished before fetch from {name}",
                extra={"table": name, "expected": len(keys), "fetched": fetched},
            )

    patch.extend(DelOp(key) for key in diff.to_delete)
    return patch
