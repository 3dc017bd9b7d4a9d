"""
Table registry for pullsync.

The TableRegistry is the explicit set of tables a deployment syncs. It is
built at startup and injected into the pull orchestrator; there is no
process-wide registry.

Each TableDef is the per-table strategy consulted during a pull:
- which SQL table holds the rows and which column scopes them to a tenant
- which columns make up the sync key
- which actor kinds sync the table, with an optional extra predicate each
- how a fetched row is projected onto the wire

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Table names are unique and valid SQL identifiers
    - Account holders carry no tenant, so every table syncing for
      ACCOUNT_HOLDER must declare a narrowing filter
    - Iteration order is registration order (stable patch order)

Example:
    >>> registry = TableRegistry()
    >>> registry.register(TableDef(
    ...     name="stage",
    ...     filters={ActorKind.TENANT_MEMBER: None},
    ... ))
    >>> registry.freeze()
    >>> [t.name for t in registry.tables_for(ActorKind.TENANT_MEMBER)]
    ['stage']
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..actor import Actor, ActorKind
from ..errors import DuplicateTableError, RegistryFrozenError, UnknownTableError
from .keys import build_key

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class SqlFilter:
    """Extra predicate contributed by a table strategy.

    ``clause`` refers to the synced table as ``t``; ``joins`` may add
    further aliased tables.

    Attributes:
        clause: SQL boolean expression
        params: Positional parameters for the clause (joins take none)
        joins: JOIN clauses appended after ``FROM <table> t``
    """

    clause: str
    params: tuple[Any, ...] = ()
    joins: str = ""


RowFilter = Callable[[Actor], SqlFilter]
Projection = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class TableDef:
    """Sync strategy for one table.

    Attributes:
        name: Logical name, used as the sync key prefix
        sql_table: Table name in the database (defaults to name)
        tenant_column: Column matched against the actor's tenant, None if unscoped
        scope_columns: Ordered key columns after the table name
        filters: Actor kinds that sync this table, each with an optional predicate
        projection: Wire transform applied to fetched rows
        json_columns: Columns holding JSON text, decoded before projection
        id_column: Primary identifier column
        version_column: Last-modified timestamp column
    """

    name: str
    sql_table: str | None = None
    tenant_column: str | None = "workspace_id"
    scope_columns: tuple[str, ...] = ("id",)
    filters: Mapping[ActorKind, RowFilter | None] = field(
        default_factory=lambda: {ActorKind.TENANT_MEMBER: None}
    )
    projection: Projection | None = None
    json_columns: tuple[str, ...] = ()
    id_column: str = "id"
    version_column: str = "time_updated"

    @property
    def table(self) -> str:
        return self.sql_table or self.name

    def syncs_for(self, kind: ActorKind) -> bool:
        return kind in self.filters

    def filter_for(self, actor: Actor) -> SqlFilter | None:
        """Extra predicate for the actor, None when the table has none."""
        row_filter = self.filters.get(actor.kind)
        return row_filter(actor) if row_filter else None

    def key_for(self, row: Mapping[str, Any]) -> str:
        return build_key(self.name, row, self.scope_columns)

    def project(self, row: dict[str, Any]) -> Any:
        """Turn a fetched row into the value put on the wire."""
        for column in self.json_columns:
            value = row.get(column)
            if isinstance(value, str):
                row[column] = json.loads(value)
        if self.projection is not None:
            return self.projection(row)
        return row


class TableRegistry:
    """Ordered registry of syncable tables.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
    """

    def __init__(self, tables: list[TableDef] | None = None) -> None:
        self._tables: dict[str, TableDef] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for table in tables or []:
            self.register(table)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, table: TableDef) -> None:
        """Register a table.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateTableError: If the name is already registered
            ValueError: If the definition is inconsistent
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(table.name)
            if table.name in self._tables:
                raise DuplicateTableError(table.name)
            self._validate(table)
            self._tables[table.name] = table
            logger.debug(
                f"Registered sync table: {table.name}",
                extra={"kinds": [kind.value for kind in table.filters]},
            )

    @staticmethod
    def _validate(table: TableDef) -> None:
        identifiers = [table.name, table.table, table.id_column, table.version_column]
        identifiers.extend(table.scope_columns)
        if table.tenant_column:
            identifiers.append(table.tenant_column)
        for identifier in identifiers:
            if not _IDENTIFIER.match(identifier):
                raise ValueError(f"Invalid identifier '{identifier}' in table '{table.name}'")

        if not table.filters:
            raise ValueError(f"Table '{table.name}' syncs for no actor kind")
        for kind, row_filter in table.filters.items():
            if not isinstance(kind, ActorKind):
                raise ValueError(f"Table '{table.name}' has filter for unknown kind {kind!r}")
            if kind is ActorKind.ACCOUNT_HOLDER and row_filter is None:
                raise ValueError(
                    f"Table '{table.name}' syncs for account holders without a filter"
                )

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def get(self, name: str) -> TableDef:
        """Get a table by name.

        Raises:
            UnknownTableError: If not registered
        """
        try:
            return self._tables[name]
        except KeyError:
            raise UnknownTableError(name) from None

    def tables_for(self, kind: ActorKind) -> list[TableDef]:
        """Tables synced for an actor kind, in registration order."""
        return [table for table in self._tables.values() if table.syncs_for(kind)]

    def __contains__(self, name: object) -> bool:
        return name in self._tables

    def __iter__(self) -> Iterator[TableDef]:
        return iter(list(self._tables.values()))

    def __len__(self) -> int:
        return len(self._tables)
