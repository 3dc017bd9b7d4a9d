"""
pullsync Test Suite.

This package contains:
- unit/: Unit tests (pure components, in-memory or temporary SQLite)
- integration/: Integration tests (orchestrator, stores and HTTP API on SQLite files)
"""
