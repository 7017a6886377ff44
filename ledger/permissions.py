from __future__ import annotations

from typing import Dict

from .models import RolePermission, User

MODULE_KEYS = [
    'projects',
    'accounts',
    'vendor_accounts',
    'users',
]

MODULE_LABELS: Dict[str, str] = {
    'projects': 'Projects',
    'accounts': 'Accounts',
    'vendor_accounts': 'Vendor accounts',
    'users': 'Users',
}

PROJECTS_ONLY = {'projects': True, 'accounts': False, 'vendor_accounts': False, 'users': False}

DEFAULT_ROLE_PERMS: Dict[str, Dict[str, bool]] = {
    User.Roles.ADMIN: {key: True for key in MODULE_KEYS},
    User.Roles.ACCOUNT_MANAGER: {
        'projects': True,
        'accounts': True,
        'vendor_accounts': True,
        'users': False,
    },
    User.Roles.DESIGN_HEAD: dict(PROJECTS_ONLY),
    User.Roles.DESIGNER: dict(PROJECTS_ONLY),
    User.Roles.EXECUTION_HEAD: dict(PROJECTS_ONLY),
    User.Roles.EXECUTION_MANAGER: dict(PROJECTS_ONLY),
    User.Roles.SITE_SUPERVISOR: dict(PROJECTS_ONLY),
    User.Roles.CLIENT: dict(PROJECTS_ONLY),
}

# Roles allowed to write to each ledger. Cost and extra-work scope changes are
# admin-only on the client side.
LEDGER_ROLES = (User.Roles.ADMIN, User.Roles.ACCOUNT_MANAGER)
CLIENT_SCOPE_ROLES = (User.Roles.ADMIN,)


def ensure_role_permissions() -> None:
    for role, defaults in DEFAULT_ROLE_PERMS.items():
        RolePermission.objects.get_or_create(role=role, defaults=defaults)


def get_permissions_for_user(user: User) -> Dict[str, bool]:
    if not user or not user.is_authenticated:
        return {key: False for key in MODULE_KEYS}
    if user.is_superuser:
        return {key: True for key in MODULE_KEYS}
    ensure_role_permissions()
    rp = RolePermission.objects.filter(role=user.role).first()
    if not rp:
        return {key: False for key in MODULE_KEYS}
    perms = {key: bool(getattr(rp, key, False)) for key in MODULE_KEYS}
    if user.role == User.Roles.CLIENT:
        # Clients never see the books, whatever the table says.
        perms['accounts'] = False
        perms['vendor_accounts'] = False
    return perms
