"""
Activity audit trail.

``log_activity`` only stages the row on the session; the caller commits it
together with the mutation it describes, so an audit entry never exists
without its change (and vice versa).
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.models.activity import ActivityLog

logger = logging.getLogger(__name__)

# action names
CHECK_IN = "check-in"
CHECK_OUT = "check-out"
AUTO_CHECKOUT = "auto-checkout"
ATTENDANCE_ADJUSTED = "attendance-adjusted"
EXCEPTION_STATUS = "exception-status"
PERMISSION_CREATED = "permission-created"
PERMISSION_DELETED = "permission-deleted"
MATRIX_UPDATED = "permission-matrix-updated"
ROLE_CREATED = "role-created"
ROLE_DELETED = "role-deleted"
USER_CREATED = "user-created"
USER_UPDATED = "user-updated"


def log_activity(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: int | str,
    description: str,
    user_id: int,
) -> ActivityLog:
    entry = ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        description=description,
        user_id=user_id,
    )
    db.add(entry)
    logger.info("Activity %s on %s/%s by user %s", action, entity_type, entity_id, user_id)
    return entry
