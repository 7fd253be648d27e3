"""
Auth endpoints — login (OAuth2 password flow), token refresh & user management.
"""

from __future__ import annotations

import logging

from fastapi import (APIRouter, Cookie, Depends, HTTPException, Request,
                     Response, status)
from fastapi.security import OAuth2PasswordRequestForm
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.api.v1.deps import (get_current_active_user, get_db,
                                  require_permission)
from crewdesk.core.config import settings
from crewdesk.core.security import (REFRESH, create_access_token,
                                    create_refresh_token, decode_token,
                                    get_password_hash, verify_password)
from crewdesk.models.permission import Role
from crewdesk.models.user import User
from crewdesk.schemas.common import MessageResponse
from crewdesk.schemas.user import (RefreshRequest, Token, UserCreate, UserRead,
                                   UserUpdate)
from crewdesk.services.activity_log import (USER_CREATED, USER_UPDATED,
                                            log_activity)

logger = logging.getLogger(__name__)

# Rate limiter, keyed by client IP
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )


async def _ensure_role_exists(db: AsyncSession, role: str) -> None:
    result = await db.execute(select(Role.id).where(Role.name == role))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=400, detail=f"Unknown role: {role}")


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
async def login_for_access_token(
    request: Request,
    response: Response,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
) -> Token:
    """Authenticate with email/password. Tokens are returned and set as HttpOnly cookies."""
    result = await db.execute(
        select(User).where(User.email == form_data.username.lower().strip())
    )
    user = result.scalar_one_or_none()

    if user is None or not verify_password(form_data.password, user.hashed_password):
        logger.warning("Failed login for %s", form_data.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    access_token = create_access_token(user.id)
    refresh_token = create_refresh_token(user.id)
    _set_auth_cookies(response, access_token, refresh_token)

    return Token(access_token=access_token, refresh_token=refresh_token)


@router.post("/refresh", response_model=Token)
@limiter.limit("10/minute")
async def refresh_access_token_endpoint(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    refresh_token_cookie: str | None = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
) -> Token:
    # Priority: Body > Cookie
    token_str = None
    if body and body.refresh_token:
        token_str = body.refresh_token
    elif refresh_token_cookie:
        token_str = refresh_token_cookie

    if not token_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token missing",
        )

    payload = decode_token(token_str, REFRESH)
    if payload is None or not str(payload.get("sub", "")).isdigit():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    result = await db.execute(select(User).where(User.id == int(payload["sub"])))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    new_access = create_access_token(user.id)
    new_refresh = create_refresh_token(user.id)
    _set_auth_cookies(response, new_access, new_refresh)

    return Token(access_token=new_access, refresh_token=new_refresh)


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    """Clear auth cookies and end the session."""
    response.delete_cookie("access_token")
    response.delete_cookie("refresh_token")
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserRead)
async def read_current_user(
    current_user: User = Depends(get_current_active_user),
) -> User:
    """Return profile of the currently authenticated user."""
    return current_user


# ── User management ─────────────────────────────────────────────────
@router.post("/users", response_model=UserRead, status_code=201)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("user_management")),
) -> User:
    """Create a new user account."""
    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Email already registered")
    await _ensure_role_exists(db, body.role)

    user = User(
        email=body.email,
        hashed_password=get_password_hash(body.password),
        full_name=body.full_name,
        department=body.department,
        role=body.role,
    )
    db.add(user)
    await db.flush()
    log_activity(
        db,
        action=USER_CREATED,
        entity_type="user",
        entity_id=user.id,
        description=f"Created {user.email} with role {user.role}",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(user)
    logger.info("User %s created with role %s", user.email, user.role)
    return user


@router.patch("/users/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("user_management")),
) -> User:
    """Update profile fields, role or active flag of a user."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    if user.id == current_user.id and (
        (body.role is not None and body.role != user.role) or body.is_active is False
    ):
        raise HTTPException(
            status_code=400, detail="You cannot change your own role or deactivate yourself"
        )

    changes: list[str] = []
    if body.role is not None and body.role != user.role:
        await _ensure_role_exists(db, body.role)
        changes.append(f"role {user.role} -> {body.role}")
        user.role = body.role
    if body.full_name is not None:
        user.full_name = body.full_name
    if body.department is not None:
        user.department = body.department
    if body.is_active is not None and body.is_active != user.is_active:
        changes.append("activated" if body.is_active else "deactivated")
        user.is_active = body.is_active
    if body.password:
        if len(body.password) < 8:
            raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
        user.hashed_password = get_password_hash(body.password)
        changes.append("password reset")

    if changes:
        log_activity(
            db,
            action=USER_UPDATED,
            entity_type="user",
            entity_id=user.id,
            description=f"Updated {user.email}: {', '.join(changes)}",
            user_id=current_user.id,
        )
    await db.commit()
    await db.refresh(user)
    return user
