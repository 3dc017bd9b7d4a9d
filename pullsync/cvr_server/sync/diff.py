"""
CVR diffing.

Compares the snapshot a client's cookie names against the rows visible now
and decides what the client must re-download and what it must drop.

Invariants:
    - Every visible row ends up in next_data, changed or not
    - A row is put when its key is new or its version differs
    - Every old key not seen again is deleted
    - The old snapshot is never mutated
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..store.rows import SyncRow

logger = logging.getLogger(__name__)


@dataclass
class Diff:
    """Outcome of comparing a CVR against fresh rows.

    Attributes:
        to_put: Changed rows grouped by table, in scan order
        to_delete: Keys the client holds that are no longer visible
        next_data: Key -> version map of the next CVR
    """

    to_put: dict[str, list[SyncRow]] = field(default_factory=dict)
    to_delete: list[str] = field(default_factory=list)
    next_data: dict[str, int] = field(default_factory=dict)

    @property
    def put_count(self) -> int:
        return sum(len(rows) for rows in self.to_put.values())

    @property
    def empty(self) -> bool:
        return not self.to_delete and self.put_count == 0


def compute_diff(
    old_data: Mapping[str, int],
    rows_by_table: Iterable[tuple[str, Iterable[SyncRow]]],
) -> Diff:
    """Diff a CVR against the currently visible rows.

    Args:
        old_data: Key -> version of the client's CVR (empty on first pull)
        rows_by_table: (table name, visible rows) pairs

    Returns:
        Diff with rows to put, keys to delete and the next CVR data
    """
    remaining = dict(old_data)
    diff = Diff()

    for table, rows in rows_by_table:
        changed = diff.to_put.setdefault(table, [])
        for row in rows:
            if row.key in diff.next_data:
                logger.warning(
                    "Duplicate sync key",
                    extra={"table": table, "key": row.key},
                )
            if old_data.get(row.key) != row.version:
                changed.append(row)
            remaining.pop(row.key, None)
            diff.next_data[row.key] = row.version

    diff.to_delete = list(remaining)

    logger.debug(
        "Computed diff",
        extra={
            "to_put": {table: len(rows) for table, rows in diff.to_put.items() if rows},
            "to_delete": len(diff.to_delete),
        },
    )
    return diff
