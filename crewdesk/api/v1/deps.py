"""
FastAPI dependencies — auth guards, permission guards, database session.

Order of checks on every protected route:
  1. credentials present and valid, user exists   -> else 401
  2. account active                               -> else 403
  3. role / permission allows the action          -> else 403
Business logic only runs after all three.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.core.config import settings
from crewdesk.core.permissions import permission_table
from crewdesk.core.security import ACCESS, decode_token
from crewdesk.db.session import async_session_factory
from crewdesk.models.user import User
from crewdesk.services.attendance_analytics import AttendanceRules

logger = logging.getLogger(__name__)

# auto_error=False so we can fall back to the cookie when the header is missing
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_PREFIX}/auth/login", auto_error=False
)


# ── Database session ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


# ── Attendance rules ────────────────────────────────────────────────
def get_rules() -> AttendanceRules:
    return AttendanceRules.from_settings(settings)


# ── Auth dependencies ───────────────────────────────────────────────
async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(default=None),  # HttpOnly cookie
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode JWT from Header OR Cookie, look up user."""

    # Priority: Header > Cookie
    final_token = token
    if not final_token and access_token:
        # Cookie is stored as "Bearer <token>"
        final_token = access_token.removeprefix("Bearer ")

    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not final_token:
        raise credentials_exc

    payload = decode_token(final_token, ACCESS)
    if payload is None:
        raise credentials_exc

    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise credentials_exc

    result = await db.execute(select(User).where(User.id == int(user_id)))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exc
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Reject inactive accounts."""
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account",
        )
    return current_user


def require_permission(permission: str) -> Callable[..., Awaitable[User]]:
    """Build a guard backed by the permission table (authoritative, server-side)."""

    async def _guard(current_user: User = Depends(get_current_active_user)) -> User:
        if not permission_table.has_permission(current_user.role, permission):
            logger.warning(
                "User %s (role=%s) denied permission %s",
                current_user.id,
                current_user.role,
                permission,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return current_user

    return _guard


# ── Team attendance guards ──────────────────────────────────────────
require_attendance_viewer = require_permission("view_team_attendance")
require_attendance_manager = require_permission("attendance_management")
