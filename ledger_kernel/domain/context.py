"""
OrgContext -- explicit tenant and actor identity.

Every service is constructed with the organization it acts on and the
already-authenticated actor performing the call.  Authorization happens
before the context is built; the kernel only scopes queries and stamps
audit columns with it.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class OrgContext:
    """Organization-scoped, authenticated actor identity."""

    organization_id: UUID
    actor_id: UUID

    def log_fields(self) -> dict[str, str]:
        return {
            "organization_id": str(self.organization_id),
            "actor_id": str(self.actor_id),
        }
