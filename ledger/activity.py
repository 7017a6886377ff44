from __future__ import annotations

import logging
from typing import Optional

from ledger.models import StaffActivity, User

logger = logging.getLogger(__name__)


def project_url(project_id) -> str:
    return f"/api/v1/projects/{project_id}/"


def log_staff_activity(
    *,
    actor: Optional[User],
    category: str,
    message: str,
    project_id=None,
    related_url: str = '',
) -> Optional[StaffActivity]:
    """Write one audit row for a ledger or project change; anonymous and system changes are only logged."""
    if project_id is not None and not related_url:
        related_url = project_url(project_id)
    logger.info("[%s] %s (%s)", category, message, related_url or '-')
    if actor is None or not actor.is_authenticated:
        return None
    return StaffActivity.objects.create(
        actor=actor,
        category=category,
        message=message[:500],
        related_url=related_url[:255],
    )
