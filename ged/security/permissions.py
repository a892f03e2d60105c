"""
GED Authority Policy — Two-tier authority model for folder and mail administration.

Levels (lower is more privileged):
    0   Full administrator: create/delete folders, purge documents,
        administer the mail responsible, sees the confidential folder
    1   May create folders, cannot delete
    >1  Read-only on folder structure

Confidential access is the single special case: the folder whose code equals
the configured confidential marker is visible to level 0 only.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ged.engine.context import AUTHORITY_MANAGER, ActingUser
from ged.engine.errors import GedPermissionError
from ged.engine.logging import AsyncLogQueue, emit, log_security_event

logger = logging.getLogger("ged.security.permissions")


def is_administrator(user: ActingUser) -> bool:
    return user.is_admin


def can_create_folder(user: ActingUser) -> bool:
    return user.authority_level <= AUTHORITY_MANAGER


def can_delete_folder(user: ActingUser) -> bool:
    return is_administrator(user)


def can_access_folder(user: ActingUser, folder_code: Optional[str], confidential_code: str) -> bool:
    """Every folder is visible to everyone except the confidential one."""
    if folder_code and folder_code.upper() == confidential_code.upper():
        return is_administrator(user)
    return True


def require_authority(
    user: ActingUser,
    max_level: int,
    action: str,
    object_type: str,
    audit: Optional[AsyncLogQueue] = None,
    **context: Any,
) -> None:
    """
    Raise GedPermissionError unless user.authority_level <= max_level.

    A denied attempt is written to the security audit log of object_type.
    """
    if user.authority_level <= max_level:
        return

    details = (
        f"User {user.username} (level {user.authority_level}) denied '{action}', "
        f"requires level <= {max_level}"
    )
    logger.warning(details)
    emit(audit, log_security_event(
        action=f"{action}_denied",
        details=details,
        object_type=object_type,
        user_id=user.user_id,
        authority_level=user.authority_level,
        required_level=max_level,
    ))
    raise GedPermissionError(
        f"Insufficient authority to {action.replace('_', ' ')}",
        user_id=user.user_id,
        authority_level=user.authority_level,
        required_level=max_level,
        action=action,
        **context,
    )
