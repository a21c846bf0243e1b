"""Caller resolution for admin endpoints.

Authentication happens upstream; requests arrive with the resolved identity in
`x-user-id`. Roles are looked up here so every endpoint enforces access before
running business logic.
"""

from dataclasses import dataclass

from fastapi import Depends, Header

from welfarehub.common.config import settings
from welfarehub.common.db import SessionLocal
from welfarehub.common.errors import Forbidden, Unauthenticated
from welfarehub.common.users import User


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def current_actor(x_user_id: str | None = Header(default=None)) -> Actor:
    """Resolve `x-user-id` into an `Actor`."""

    if not x_user_id:
        raise Unauthenticated("Unauthorized")
    with SessionLocal() as db:
        user = db.get(User, x_user_id)
    if user is None:
        raise Forbidden("Forbidden")
    return Actor(user_id=user.user_id, role=user.role)


def require_roles(roles: list[str]):
    """Build a dependency that only admits callers holding one of `roles`."""

    def dependency(actor: Actor = Depends(current_actor)) -> Actor:
        if actor.role not in roles:
            raise Forbidden("Forbidden")
        return actor

    return dependency


require_admin_panel = require_roles(settings.admin_roles)
require_recheck = require_roles(settings.recheck_roles)
