"""
Error types for the pullsync server.

This module defines the exceptions raised while serving a pull:
- SyncError: Base exception
- ProtocolVersionMismatch: Client speaks an unsupported pull version
- ActorMismatchError: Resolved actor differs from the group's bound actor
- TransactionConflictError: Storage contention (lock or busy timeout)
- MalformedRowError: Row has no usable last-modified timestamp
- Table registry errors

Invariants:
    - All errors inherit from SyncError
    - Errors carry a stable code for programmatic handling
    - Protocol errors are raised before any transaction is opened
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base exception for all pullsync server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_ERROR"
        self.details = details or {}


class ProtocolVersionMismatch(SyncError):
    """The request's pullVersion is not served by this endpoint.

    The client is expected to retry against ``location``.
    """

    def __init__(self, pull_version: int, location: str) -> None:
        super().__init__(
            f"Unsupported pullVersion {pull_version}, use {location}",
            code="PROTOCOL_VERSION",
            details={"pull_version": pull_version, "location": location},
        )
        self.pull_version = pull_version
        self.location = location


class ActorMismatchError(SyncError):
    """The pulling actor is not the actor bound to the client group."""

    def __init__(self, client_group_id: str) -> None:
        super().__init__(
            f"Actor does not match client group {client_group_id}",
            code="ACTOR_MISMATCH",
            details={"client_group_id": client_group_id},
        )
        self.client_group_id = client_group_id


class TransactionConflictError(SyncError):
    """Storage contention aborted the pull.

    Raised when:
    - The database lock could not be acquired within the busy timeout
    - The transaction was aborted by a concurrent writer

    Safe to retry with the same cookie.
    """

    def __init__(self, message: str, client_group_id: str | None = None) -> None:
        super().__init__(
            message,
            code="TRANSACTION_CONFLICT",
            details={"client_group_id": client_group_id},
        )
        self.client_group_id = client_group_id


class MalformedRowError(SyncError):
    """Row cannot be synced because its version is missing or unparsable."""

    def __init__(self, table: str, row_id: Any, value: Any) -> None:
        super().__init__(
            f"Row {table}/{row_id} has no usable version: {value!r}",
            code="MALFORMED_ROW",
            details={"table": table, "id": row_id},
        )
        self.table = table
        self.row_id = row_id


class UnknownTableError(SyncError):
    """Table is not registered for sync."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Table '{name}' is not registered", code="UNKNOWN_TABLE")
        self.name = name


class DuplicateTableError(SyncError):
    """Table name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Table '{name}' already registered", code="DUPLICATE_TABLE")
        self.name = name


class RegistryFrozenError(SyncError):
    """Registry was modified after being frozen."""

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Cannot register table '{name}': registry is frozen",
            code="REGISTRY_FROZEN",
        )
        self.name = name
