"""
pullsync server - main entry point.

Starts the HTTP pull endpoint backed by a SQLite database.

Usage:
    python -m pullsync.cvr_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Sync tables (and the console catalog, if enabled) exist before the
      first request is served
    - The table registry is frozen before serving
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn
from fastapi import FastAPI

from .api import create_app
from .config import ServerConfig
from .store import Database
from .sync import PullOrchestrator
from .tables import TableRegistry, create_catalog_schema, default_registry

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_app(config: ServerConfig, registry: TableRegistry | None = None) -> FastAPI:
    """Open the database and wire the orchestrator into an app.

    Args:
        config: Server configuration
        registry: Tables to sync (the console catalog if not provided)
    """
    database = Database(
        config.storage.database_path,
        wal_mode=config.storage.wal_mode,
        busy_timeout_ms=config.storage.busy_timeout_ms,
    )
    database.initialize()
    if config.storage.create_catalog:
        with database.connect() as conn:
            create_catalog_schema(conn)

    if registry is None:
        registry = default_registry()
    registry.freeze()
    logger.info(f"Syncing {len(registry)} tables")

    orchestrator = PullOrchestrator(database, registry, config.sync)
    return create_app(orchestrator, config.http)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    app = build_app(config)
    uvicorn.run(app, host=config.http.host, port=config.http.port, log_config=None)


if __name__ == "__main__":
    main()
