from __future__ import annotations

from rest_framework.permissions import BasePermission

from ledger.models import User
from ledger.permissions import MODULE_LABELS, get_permissions_for_user


def _acting_user(request) -> User | None:
    user = getattr(request, 'user', None)
    if user is None or not user.is_authenticated:
        return None
    return user


class ModulePermission(BasePermission):
    """Lets a request through when the caller's role has ``view.module_permission`` switched on."""

    message = "You don't have access to this area."

    def has_permission(self, request, view) -> bool:
        user = _acting_user(request)
        if user is None:
            return False
        module = getattr(view, 'module_permission', None)
        if module is None or user.is_superuser:
            return True
        if get_permissions_for_user(user).get(module, False):
            return True
        self.message = f"Your role has no access to {MODULE_LABELS.get(module, module)}."
        return False


class RolePermission(BasePermission):
    """Restricts the current action to ``view.allowed_roles``; no roles means any authenticated user."""

    message = 'You do not have permission to perform this action.'

    def has_permission(self, request, view) -> bool:
        roles = tuple(getattr(view, 'allowed_roles', None) or ())
        if not roles:
            return True
        user = _acting_user(request)
        if user is None:
            return False
        if user.is_superuser or user.has_any_role(*roles):
            return True
        self.message = f"Only {', '.join(User.Roles(role).label for role in roles)} can do this."
        return False
