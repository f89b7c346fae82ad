"""
Access control: admin-only route dependencies and sender ownership checks.
"""

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, status

from courier_backend.app.core.dependencies import get_current_user
from courier_backend.app.core.exceptions import InsufficientPermissionsError
from courier_backend.app.models.enums import UserRole


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Build a dependency that lets through only callers holding one of
    ``allowed_roles``; anyone else gets a 403.

        @router.patch("/{parcel_id}/status")
        async def update(current_user: dict = Depends(require_admin)): ...
    """
    allowed = frozenset(allowed_roles)
    required = ", ".join(sorted(role.value for role in allowed))

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            role = UserRole(current_user.get("role"))
        except ValueError:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid role in token")

        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {required}",
            )
        return current_user

    return role_checker


require_admin = require_role([UserRole.ADMIN])


def is_admin(current_user: dict) -> bool:
    return current_user.get("role") == UserRole.ADMIN.value


class OwnershipGuard:
    """Sender-scoped access used for parcel requests; admins bypass it."""

    def owns(self, owner_id: int, current_user: dict) -> bool:
        return is_admin(current_user) or current_user.get("user_id") == owner_id

    def enforce(self, owner_id: int, current_user: dict, resource_name: str = "resource", action: str = "access"):
        if not self.owns(owner_id, current_user):
            raise InsufficientPermissionsError(f"You do not have permission to {action} this {resource_name}")

    def filter_by_ownership(self, current_user: dict) -> Optional[int]:
        """Owner id to scope list queries by, or None for admins."""
        if is_admin(current_user):
            return None
        return current_user.get("user_id")
