"""
Table module for pullsync.

This module describes what gets synced:
- Sync key construction (build_key)
- Per-table sync strategies (TableDef, SqlFilter)
- The explicit registry injected into the orchestrator
- The default console table catalog

Invariants:
    - Keys are derived from immutable scope columns only
    - Registries are frozen before serving
"""

from .catalog import CATALOG, create_catalog_schema, default_registry
from .keys import INIT_KEY, build_key
from .registry import Projection, RowFilter, SqlFilter, TableDef, TableRegistry

__all__ = [
    # Keys
    "INIT_KEY",
    "build_key",
    # Registry
    "TableDef",
    "TableRegistry",
    "SqlFilter",
    "RowFilter",
    "Projection",
    # Catalog
    "CATALOG",
    "create_catalog_schema",
    "default_registry",
]
