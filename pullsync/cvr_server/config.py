"""
Configuration management for the pullsync server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit DATABASE_PATH

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing PULL_PAGE_SIZE is safe at any time
    - Lowering CVR_RETENTION makes older cookies re-sync from scratch
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ActorMismatchPolicy(Enum):
    """What a pull does when the actor is not the group's bound actor."""

    NOOP = "noop"
    ERROR = "error"


@dataclass(frozen=True)
class StorageConfig:
    """SQLite storage configuration.

    Attributes:
        database_path: SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: How long a pull waits for the write lock
        create_catalog: Create the console tables on startup
    """

    database_path: str = "/var/lib/pullsync/sync.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    create_catalog: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "/var/lib/pullsync/sync.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            create_catalog=os.getenv("CREATE_CATALOG", "true").lower() == "true",
        )


@dataclass(frozen=True)
class SyncConfig:
    """Pull protocol configuration.

    Attributes:
        pull_version: The only pullVersion this endpoint serves
        redirect_location: Where clients with another pullVersion are sent
        page_size: Rows fetched per query when building a patch
        cvr_retention: CVR snapshots kept per client group
        actor_mismatch: Behavior when a group is pulled by a different actor
    """

    pull_version: int = 1
    redirect_location: str = "/replicache/pull"
    page_size: int = 10_000
    cvr_retention: int = 10
    actor_mismatch: ActorMismatchPolicy = ActorMismatchPolicy.NOOP

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        policy_str = os.getenv("ACTOR_MISMATCH", "noop").lower()
        try:
            policy = ActorMismatchPolicy(policy_str)
        except ValueError:
            raise ValueError(f"Invalid ACTOR_MISMATCH '{policy_str}'. Must be one of: noop, error")

        return cls(
            pull_version=int(os.getenv("PULL_VERSION", "1")),
            redirect_location=os.getenv("PULL_REDIRECT_LOCATION", "/replicache/pull"),
            page_size=int(os.getenv("PULL_PAGE_SIZE", "10000")),
            cvr_retention=int(os.getenv("CVR_RETENTION", "10")),
            actor_mismatch=policy,
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Bind host
        port: Bind port
        pull_path: Route serving pulls
        cors_origins: Allowed CORS origins
        gzip_minimum_size: Responses smaller than this are sent uncompressed
    """

    host: str = "0.0.0.0"
    port: int = 8080
    pull_path: str = "/replicache/pull1"
    cors_origins: tuple[str, ...] = ("*",)
    gzip_minimum_size: int = 1000

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            pull_path=os.getenv("HTTP_PULL_PATH", "/replicache/pull1"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            gzip_minimum_size=int(os.getenv("GZIP_MINIMUM_SIZE", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: SQLite storage configuration
        sync: Pull protocol configuration
        http: HTTP server configuration
        observability: Observability configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            sync=SyncConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.database_path:
            raise ValueError("DATABASE_PATH is required")
        if self.sync.page_size < 1:
            raise ValueError("PULL_PAGE_SIZE must be positive")
        if self.sync.cvr_retention < 1:
            raise ValueError("CVR_RETENTION must be at least 1")
        if not self.http.pull_path.startswith("/"):
            raise ValueError("HTTP_PULL_PATH must start with '/'")
        if self.http.pull_path == self.sync.redirect_location:
            raise ValueError("PULL_REDIRECT_LOCATION must differ from HTTP_PULL_PATH")

        if not os.path.exists(os.path.dirname(self.storage.database_path) or "."):
            logger.warning(
                f"Database directory does not exist: {self.storage.database_path}. "
                "It will be created on first connection."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "database_path": self.storage.database_path,
                "pull_version": self.sync.pull_version,
                "pull_path": self.http.pull_path,
                "page_size": self.sync.page_size,
                "cvr_retention": self.sync.cvr_retention,
                "actor_mismatch": self.sync.actor_mismatch.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
