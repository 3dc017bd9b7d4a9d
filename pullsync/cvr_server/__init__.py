"""
pullsync server - incremental pull synchronization for client caches.

This package serves the "pull" half of a client/server sync protocol:
- A client group presents a cookie naming the Client View Record (CVR) it
  last received
- The server diffs that CVR against the rows the actor can see now
- The response patch (clear/put/del) brings the client cache up to date
- A new CVR snapshot is stored and its version returned as the next cookie

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Client    │────▶│  HTTP API   │────▶│ PullOrchestrator │
    │   group     │◀────│  (FastAPI)  │◀────│                  │
    └─────────────┘     └─────────────┘     └────────┬─────────┘
                                                     │ one transaction
                        ┌────────────────────────────┼───────────────┐
                        ▼                            ▼               ▼
                  ┌───────────┐              ┌─────────────┐  ┌────────────┐
                  │ Row scan  │──▶ Diff ──▶  │ Patch build │  │ CVR store  │
                  │ per table │              │ (paged)     │  │ + groups   │
                  └───────────┘              └─────────────┘  └────────────┘
                        │                            │               │
                        └────────────────────────────┴───────────────┘
                                             ▼
                                      ┌────────────┐
                                      │  SQLite    │
                                      └────────────┘

Invariants:
    - The database is the only state; nothing is cached between pulls
    - cvr_version strictly increases per client group
    - Pulls of one group are serialized by the database write lock
    - A failed pull writes nothing

How to change safely:
    - Register tables through an explicit TableRegistry
    - Never change a table's scope columns without expecting full re-syncs

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
