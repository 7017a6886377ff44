from __future__ import annotations

from django.db.models import Q

from ledger.models import Project, User
from ledger.permissions import get_permissions_for_user


def can_view_all_projects(user: User | None) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser or user.role == User.Roles.ADMIN:
        return True
    perms = get_permissions_for_user(user)
    return bool(perms.get('accounts') or perms.get('vendor_accounts'))


def visible_projects_for_user(user: User | None, queryset=None):
    qs = queryset if queryset is not None else Project.objects.all()
    if can_view_all_projects(user):
        return qs
    if not user or not user.is_authenticated:
        return qs.none()
    return qs.filter(Q(members=user) | Q(client_user=user) | Q(created_by=user)).distinct()


def visible_project_rows(user: User | None, queryset, lookup: str = 'project'):
    """Restrict any project-owned queryset to the projects ``user`` may see."""
    if can_view_all_projects(user):
        return queryset
    if not user or not user.is_authenticated:
        return queryset.none()
    projects = visible_projects_for_user(user).values('pk')
    return queryset.filter(**{f'{lookup}__in': projects})
