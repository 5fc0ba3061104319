"""
Lead Auction Engine - Actor Context

The identity collaborator authenticates callers; the engine only receives
who is acting and in which role. Every engine call takes one of these.
"""
from dataclasses import dataclass

from .db_models import ActorRole


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM


# The engine acting on its own authority (lazy expiry, sweeps)
SYSTEM_ACTOR = Actor(actor_id="system", role=ActorRole.SYSTEM)
