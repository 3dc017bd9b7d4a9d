"""
Sync module for pullsync - the CVR engine.

This module handles:
- Diffing a CVR against visible rows
- Building the patch sent to the client
- Tracking last applied mutation IDs
- Orchestrating a pull inside one transaction
"""

from .diff import Diff, compute_diff
from .mutations import last_mutation_id_changes
from .patch import ClearOp, DelOp, PatchOp, PutOp, build_patch
from .pull import PullOrchestrator, PullRequest, PullResponse, PullState

__all__ = [
    "Diff",
    "compute_diff",
    "last_mutation_id_changes",
    "ClearOp",
    "DelOp",
    "PatchOp",
    "PutOp",
    "build_patch",
    "PullOrchestrator",
    "PullRequest",
    "PullResponse",
    "PullState",
]
