"""
Sync key construction.

A sync key names one row in a client's cache: ``/<table>/<scope...>``.
The scope defaults to the row id; tables whose ids are only unique within a
parent (issues per stage, warnings per stage and type) list the parent
columns first. An empty scope makes the table a singleton per tenant.

NULL scope values are left out together with their separator, so a row
with a NULL parent column keys as ``/<table>/<id>``.

Invariants:
    - Keys are deterministic strings, never None
    - Keys are injective per table for non-NULL scope values
    - Keys are built only from immutable columns
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

KEY_SEPARATOR = "/"
INIT_KEY = "/init"


def build_key(table: str, row: Mapping[str, Any], scope_columns: Sequence[str] = ("id",)) -> str:
    """Build the sync key for a row.

    Args:
        table: Registered table name
        row: Row values, must contain every scope column
        scope_columns: Ordered columns identifying the row within the table

    Returns:
        Key such as ``/issue/stage_1/iss_9``

    Raises:
        KeyError: If a scope column is missing from the row
    """
    values = (row[column] for column in scope_columns)
    parts = ["", table, *(str(value) for value in values if value is not None)]
    return KEY_SEPARATOR.join(parts)
