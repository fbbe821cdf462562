"""
Role-based DRF permission classes.

These gate whole endpoints by the user's role claim. Per-request rules
(owner, assigned helper, state) are enforced by the service layer.
"""

from __future__ import annotations

from rest_framework import permissions

from authentication.models import User


class HasRole(permissions.BasePermission):
    """Allow authenticated users whose role is in ``roles``."""

    roles: tuple[str, ...] = ()
    message = "Your role does not allow this action."

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.role in self.roles)


class IsRequester(HasRole):
    roles = (User.Role.REQUESTER,)


class IsHelper(HasRole):
    roles = (User.Role.HELPER,)


class IsPlatformAdmin(HasRole):
    roles = (User.Role.ADMIN,)
    message = "Only platform administrators may do this."
