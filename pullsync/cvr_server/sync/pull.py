"""
Pull orchestration.

A pull moves through these phases, all but the first inside one
exclusive transaction:

    start         protocol check, client group created if missing
    group locked  write lock held, group row read, actor checked
    cvr loaded    snapshot named by the cookie loaded (or synthesized)
    diffed        every table for the actor kind scanned and diffed
    decided       mutation changes collected, commit or no-op chosen
    committed     patch built, group version bumped, snapshot stored,
                  old ones pruned
    no-op         nothing changed; stored state untouched

Only the last two are reported back, as PullState.

Invariants:
    - cvr_version strictly increases per group:
      next = max(cookie or 0, group.cvr_version) + 1
    - The diff is always against the single snapshot the cookie names
    - Protocol errors are raised before any transaction is opened
    - A failed or cancelled pull writes nothing

How to change safely:
    - Keep every read and write between lock and commit on the same
      connection
    - Retrying with the same cookie must stay safe: never derive the next
      version from anything but the cookie and the locked group row
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..actor import Actor
from ..config import ActorMismatchPolicy, SyncConfig
from ..errors import ActorMismatchError, ProtocolVersionMismatch, SyncError
from ..store.cvr_store import CvrSnapshot, CvrStore
from ..store.database import Database
from ..store.rows import scan_row_versions
from ..tables.registry import TableRegistry
from .diff import compute_diff
from .mutations import last_mutation_id_changes
from .patch import PatchOp, build_patch

logger = logging.getLogger(__name__)


class PullState(Enum):
    """How a pull ended."""

    COMMITTED = "committed"
    NOOP = "no-op"


@dataclass
class PullRequest:
    """A client's pull.

    Attributes:
        client_group_id: Client group pulling
        cookie: CVR version the client last received, None on first pull
        pull_version: Protocol version spoken by the client
    """

    client_group_id: str
    cookie: int | None = None
    pull_version: int = 1


@dataclass
class PullResponse:
    """Result of a pull.

    Attributes:
        patch: Ordered cache operations
        cookie: CVR version to present on the next pull
        last_mutation_id_changes: Client ID -> last applied mutation ID
        state: Final state (COMMITTED or NOOP)
    """

    patch: list[PatchOp] = field(default_factory=list)
    cookie: int | None = None
    last_mutation_id_changes: dict[str, int] = field(default_factory=dict)
    state: PullState = PullState.NOOP

    def to_dict(self) -> dict[str, Any]:
        """Wire representation."""
        return {
            "patch": [op.to_dict() for op in self.patch],
            "cookie": self.cookie,
            "lastMutationIDChanges": dict(self.last_mutation_id_changes),
        }


class PullOrchestrator:
    """Serves pulls against one database and one table registry.

    Example:
        >>> orchestrator = PullOrchestrator(db, default_registry())
        >>> response = await orchestrator.pull(
        ...     PullRequest(client_group_id="cg_1", cookie=None),
        ...     Actor.tenant_member("ws_1", userID="usr_1"),
        ... )
        >>> response.cookie
        1
    """

    def __init__(
        self,
        database: Database,
        registry: TableRegistry,
        config: SyncConfig | None = None,
        cvr_store: CvrStore | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            database: Database holding synced tables and sync bookkeeping
            registry: Tables to sync
            config: Pull protocol configuration
            cvr_store: Snapshot store (built from config if not provided)
        """
        self.database = database
        self.registry = registry
        self.config = config or SyncConfig()
        self.cvr_store = cvr_store or CvrStore(retention=self.config.cvr_retention)

    def check_protocol(self, request: PullRequest) -> None:
        """Reject pulls in a protocol version this endpoint does not serve.

        Raises:
            ProtocolVersionMismatch: Carrying the redirect location
        """
        if request.pull_version != self.config.pull_version:
            raise ProtocolVersionMismatch(request.pull_version, self.config.redirect_location)

    async def pull(self, request: PullRequest, actor: Actor) -> PullResponse:
        """Compute and commit the next CVR for a client group.

        Args:
            request: The client's pull
            actor: Resolved pulling actor

        Returns:
            PullResponse; its state tells whether anything was committed

        Raises:
            ProtocolVersionMismatch: Unsupported pullVersion
            ActorMismatchError: Actor differs and the policy is ERROR
            TransactionConflictError: Storage contention, retry with same cookie
        """
        self.check_protocol(request)

        group_id = request.client_group_id
        with self.database.transaction(label=group_id) as conn:
            self.cvr_store.ensure_client_group(conn, group_id, actor)

        with self.database.transaction(label=group_id) as conn:
            response = self._pull_locked(conn, request, actor)

        logger.info(
            "Pull complete",
            extra={
                "client_group_id": group_id,
                "state": response.state.value,
                "cookie": response.cookie,
                "ops": len(response.patch),
                "clients": len(response.last_mutation_id_changes),
            },
        )
        return response

    def _pull_locked(
        self, conn: sqlite3.Connection, request: PullRequest, actor: Actor
    ) -> PullResponse:
        group_id = request.client_group_id

        # Lock held: read the group and check the actor
        group = self.cvr_store.get_client_group(conn, group_id)
        if group is None:
            raise SyncError(f"Client group vanished: {group_id}", code="GROUP_MISSING")

        if group.actor != actor:
            logger.warning(
                "Actor does not match client group",
                extra={
                    "client_group_id": group_id,
                    "bound_actor_type": group.actor.kind.value,
                    "actor_type": actor.kind.value,
                },
            )
            if self.config.actor_mismatch is ActorMismatchPolicy.ERROR:
                raise ActorMismatchError(group_id)
            return PullResponse(patch=[], cookie=request.cookie, state=PullState.NOOP)

        # Load the snapshot the cookie names
        old = self.cvr_store.get_snapshot(conn, group_id, request.cookie)
        initial = old is None
        if old is None:
            old = CvrSnapshot(client_group_id=group_id, version=0, data={}, client_version=0)

        # Diff every table the actor syncs
        tables = self.registry.tables_for(actor.kind)
        diff = compute_diff(
            old.data,
            ((table.name, scan_row_versions(conn, table, actor)) for table in tables),
        )
        next_version = max(request.cookie or 0, group.cvr_version) + 1

        # Decide: nothing to send and no mutation acknowledgements is a no-op
        changes = last_mutation_id_changes(conn, group_id, old.client_version)
        logger.debug(
            "Diffed client view",
            extra={
                "client_group_id": group_id,
                "initial": initial,
                "puts": diff.put_count,
                "deletes": len(diff.to_delete),
                "clients": len(changes),
            },
        )

        if not initial and diff.empty and not changes:
            return PullResponse(
                patch=[],
                cookie=request.cookie,
                last_mutation_id_changes=changes,
                state=PullState.NOOP,
            )

        # Commit
        patch = build_patch(
            conn,
            self.registry,
            actor,
            diff,
            initial=initial,
            page_size=self.config.page_size,
        )
        self.cvr_store.set_cvr_version(conn, group_id, next_version)
        self.cvr_store.put_snapshot(
            conn,
            CvrSnapshot(
                client_group_id=group_id,
                version=next_version,
                data=diff.next_data,
                client_version=group.client_version,
            ),
        )
        self.cvr_store.prune_snapshots(conn, group_id, next_version)

        return PullResponse(
            patch=patch,
            cookie=next_version,
            last_mutation_id_changes=changes,
            state=PullState.COMMITTED,
        )
