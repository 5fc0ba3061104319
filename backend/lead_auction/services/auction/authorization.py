"""
Role and ownership checks shared by the auction services.

The identity collaborator has already authenticated the actor; these
helpers only decide whether that actor may perform an operation.
"""
from ...models.actor import Actor
from ...models.db_models import ApplicationDB, ActorRole
from .errors import AuthorizationError


def require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise AuthorizationError(
            f"Role {actor.role.value} is not permitted (requires one of: {allowed})",
            {"actor_role": actor.role.value},
        )


def require_owner_or_admin(actor: Actor, application: ApplicationDB) -> None:
    """The owning business, or an admin acting as an audited override."""
    if actor.is_admin:
        return
    if actor.role == ActorRole.BUSINESS and actor.actor_id == application.owner_business_id:
        return
    raise AuthorizationError(
        "Only the owning business or an admin can do this",
        {"application_id": application.id},
    )


def require_self_or_admin(actor: Actor, role: ActorRole, subject_id: str) -> None:
    """An actor acting on their own behalf in the given role, or an admin."""
    if actor.is_admin:
        return
    if actor.role == role and actor.actor_id == subject_id:
        return
    raise AuthorizationError(
        f"Only the {role.value} itself or an admin can do this",
        {"subject_id": subject_id},
    )
