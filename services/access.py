"""
Caller identity and ownership checks.

Every mutating owner operation asks AccessPolicy whether the caller may
manage the resource before touching any state.
"""

from __future__ import annotations

from dataclasses import dataclass

from errors import ForbiddenError

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Caller:
    """The authenticated user behind a request (from the host-issued JWT)."""

    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class AccessPolicy:
    def can_manage(self, caller: Caller, owner_id: str) -> bool:
        """Owners manage their own resources; administrators manage everything."""
        return caller.is_admin or caller.user_id == owner_id

    def ensure_can_manage(self, caller: Caller, owner_id: str, resource: str) -> None:
        if not self.can_manage(caller, owner_id):
            raise ForbiddenError(f"you do not have access to this {resource}")
