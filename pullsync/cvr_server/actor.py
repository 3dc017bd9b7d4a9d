"""
Actor descriptors for pulls.

An actor is the resolved identity a pull is scoped to. Resolution itself
(sessions, tokens) happens outside this package; the server only branches on
the actor kind and compares actors by value against the one bound to a
client group.

Actor kinds:
    - tenant-member: a user inside one tenant (workspace); syncs every
      table registered for members, scoped to the tenant
    - account-holder: a signed-in account not yet inside a tenant; syncs
      only its own user and workspace rows, matched by email

Invariants:
    - Equality is by value (kind, tenant_id, properties); the hash covers
      kind and tenant_id only, so actors can key dicts and sets
    - The serialized form is canonical (sorted keys) so stored actors
      compare equal to freshly resolved ones

How to change safely:
    - New actor kinds must be added to ActorKind and given a filter on
      every table that should sync for them
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActorKind(Enum):
    """Kinds of actors that can pull."""

    TENANT_MEMBER = "tenant-member"
    ACCOUNT_HOLDER = "account-holder"


@dataclass(frozen=True)
class Actor:
    """Resolved actor for a pull.

    Attributes:
        kind: Actor kind
        tenant_id: Tenant the actor acts in (tenant members only)
        properties: Identity properties (userID, email, ...)
    """

    kind: ActorKind
    tenant_id: str | None = None
    properties: dict[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if self.kind is ActorKind.TENANT_MEMBER and not self.tenant_id:
            raise ValueError("tenant-member actors require a tenant_id")

    @classmethod
    def tenant_member(cls, tenant_id: str, **properties: Any) -> Actor:
        return cls(kind=ActorKind.TENANT_MEMBER, tenant_id=tenant_id, properties=properties)

    @classmethod
    def account_holder(cls, email: str, **properties: Any) -> Actor:
        return cls(kind=ActorKind.ACCOUNT_HOLDER, properties={"email": email, **properties})

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "type": self.kind.value,
            "tenantID": self.tenant_id,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Actor:
        """Create from dictionary representation.

        Raises:
            ValueError: If the actor type is unknown
        """
        return cls(
            kind=ActorKind(data["type"]),
            tenant_id=data.get("tenantID"),
            properties=dict(data.get("properties") or {}),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> Actor:
        return cls.from_dict(json.loads(raw))
