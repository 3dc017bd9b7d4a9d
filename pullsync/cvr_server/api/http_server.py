"""
HTTP API for the pullsync server.

Exposes the pull endpoint over FastAPI:

    POST {pull_path}    body {pullVersion, clientGroupID, cookie}
                        200 {patch, cookie, lastMutationIDChanges}
                        307 Location: {redirect_location}  (other pullVersion)
                        401 actor could not be resolved
                        403 actor mismatch (error policy only)
                        409 storage contention, retry with the same cookie
    GET  /health

Responses are gzip-compressed when the client advertises gzip.

Invariants:
    - Actor resolution happens before the orchestrator is called
    - Redirects carry no body

How to change safely:
    - The request and response field names are fixed by the client library
    - Swap actor resolution by passing actor_resolver to create_app
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from .._version import __version__
from ..actor import Actor, ActorKind
from ..config import HttpConfig
from ..errors import (
    ActorMismatchError,
    ProtocolVersionMismatch,
    SyncError,
    TransactionConflictError,
)
from ..sync.pull import PullOrchestrator, PullRequest

logger = logging.getLogger(__name__)

ActorResolver = Callable[[Request], Actor]


# --- Request/Response Models ---


class PullRequestBody(BaseModel):
    """Pull request as sent by the client library."""

    pull_version: int = Field(..., alias="pullVersion", description="Pull protocol version")
    client_group_id: str = Field(..., alias="clientGroupID", min_length=1)
    cookie: int | None = Field(None, description="CVR version from the previous pull")

    model_config = {"populate_by_name": True}


class PatchOperationModel(BaseModel):
    op: str
    key: str | None = None
    value: Any = None


class PullResponseBody(BaseModel):
    """Successful pull response."""

    patch: list[PatchOperationModel]
    cookie: int | None
    last_mutation_id_changes: dict[str, int] = Field(..., alias="lastMutationIDChanges")


# --- Actor resolution ---


def header_actor_resolver(request: Request) -> Actor:
    """Resolve the actor from request headers.

    Headers:
        X-Actor-Type: tenant-member | account-holder
        X-Tenant-ID: Tenant (required for tenant members)
        X-Actor: JSON object of identity properties

    Raises:
        HTTPException: 401 if headers are missing or invalid
    """
    kind_str = request.headers.get("X-Actor-Type")
    raw_properties = request.headers.get("X-Actor", "{}")
    try:
        kind = ActorKind(kind_str)
        properties = json.loads(raw_properties)
        if not isinstance(properties, dict):
            raise ValueError("X-Actor must be a JSON object")
        return Actor(kind=kind, tenant_id=request.headers.get("X-Tenant-ID"), properties=properties)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=f"Cannot resolve actor: {e}") from e


# --- Dependencies ---


def get_orchestrator(request: Request) -> PullOrchestrator:
    """Get orchestrator from app state."""
    return request.app.state.orchestrator


def get_actor(request: Request) -> Actor:
    """Resolve the pulling actor with the app's resolver."""
    return request.app.state.actor_resolver(request)


def _error(status: int, error: SyncError) -> JSONResponse:
    return JSONResponse({"error": error.message, "error_code": error.code}, status_code=status)


def create_app(
    orchestrator: PullOrchestrator,
    config: HttpConfig | None = None,
    actor_resolver: ActorResolver | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        orchestrator: Pull orchestrator serving requests
        config: HTTP configuration
        actor_resolver: Callable resolving the actor of a request

    Returns:
        FastAPI application
    """
    config = config or HttpConfig()

    app = FastAPI(
        title="pullsync",
        description="Incremental pull endpoint keeping client caches in sync.",
        version=__version__,
    )
    app.state.orchestrator = orchestrator
    app.state.actor_resolver = actor_resolver or header_actor_resolver

    app.add_middleware(GZipMiddleware, minimum_size=config.gzip_minimum_size)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(ProtocolVersionMismatch)
    async def handle_protocol(request: Request, exc: ProtocolVersionMismatch) -> Response:
        logger.info(
            "Redirecting pull",
            extra={"pull_version": exc.pull_version, "location": exc.location},
        )
        return Response(status_code=307, headers={"location": exc.location})

    @app.exception_handler(ActorMismatchError)
    async def handle_actor_mismatch(request: Request, exc: ActorMismatchError) -> Response:
        return _error(403, exc)

    @app.exception_handler(TransactionConflictError)
    async def handle_conflict(request: Request, exc: TransactionConflictError) -> Response:
        logger.warning(f"Pull conflict: {exc.message}", extra=exc.details)
        return _error(409, exc)

    @app.exception_handler(SyncError)
    async def handle_sync_error(request: Request, exc: SyncError) -> Response:
        logger.error(f"Pull failed: {exc.message}", extra={"error_code": exc.code})
        return _error(500, exc)

    @app.post(config.pull_path, response_model=PullResponseBody)
    async def pull(
        body: PullRequestBody,
        orchestrator: PullOrchestrator = Depends(get_orchestrator),
        actor: Actor = Depends(get_actor),
    ) -> JSONResponse:
        """Return the patch bringing the client group's cache up to date."""
        logger.debug(
            "Pull request",
            extra={
                "client_group_id": body.client_group_id,
                "cookie": body.cookie,
                "actor_type": actor.kind.value,
            },
        )
        response = await orchestrator.pull(
            PullRequest(
                client_group_id=body.client_group_id,
                cookie=body.cookie,
                pull_version=body.pull_version,
            ),
            actor,
        )
        return JSONResponse(response.to_dict())

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "service": "pullsync"}

    return app
