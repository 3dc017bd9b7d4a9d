"""
API module for pullsync server.

This module provides the external interface:
- HTTP pull endpoint (FastAPI)

Invariants:
    - Actors are resolved before a pull starts
    - Protocol version mismatches are redirects, not errors
"""

from .http_server import ActorResolver, create_app, header_actor_resolver

__all__ = [
    "ActorResolver",
    "create_app",
    "header_actor_resolver",
]
