"""
Permission catalogue & role → permission matrix.

Every mutation here ends with ``refresh_permission_table`` so the guards
see the new grants on the very next request.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete as sa_delete
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.api.v1.deps import (get_current_active_user, get_db,
                                  require_permission)
from crewdesk.core.config import settings
from crewdesk.core.permissions import permission_table
from crewdesk.models.permission import Permission, Role, RolePermission
from crewdesk.models.user import User
from crewdesk.schemas.common import MessageResponse
from crewdesk.schemas.permission import (MatrixUpdate, PermissionCreate,
                                         PermissionRead)
from crewdesk.services.activity_log import (MATRIX_UPDATED,
                                            PERMISSION_CREATED,
                                            PERMISSION_DELETED, log_activity)
from crewdesk.services.permission_store import refresh_permission_table

router = APIRouter(prefix="/permissions", tags=["permissions"])
logger = logging.getLogger(__name__)


def _ensure_editable() -> None:
    if not settings.PERMISSIONS_EDITABLE:
        raise HTTPException(
            status_code=400,
            detail="Permissions are managed centrally and cannot be changed at runtime",
        )


# ── Catalogue ───────────────────────────────────────────────────────
@router.get("", response_model=list[PermissionRead])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_active_user),
) -> list[Permission]:
    result = await db.execute(select(Permission).order_by(Permission.category, Permission.name))
    return list(result.scalars().all())


@router.post("", response_model=PermissionRead, status_code=201)
async def create_permission(
    body: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("manage_permissions")),
) -> Permission:
    _ensure_editable()

    existing = await db.execute(select(Permission.id).where(Permission.name == body.name))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Permission already exists")

    permission = Permission(
        name=body.name,
        description=body.description,
        category=body.category,
        is_system=False,
    )
    db.add(permission)
    await db.flush()
    log_activity(
        db,
        action=PERMISSION_CREATED,
        entity_type="permission",
        entity_id=permission.name,
        description=f"Created permission {permission.name}",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(permission)
    return permission


@router.delete("", response_model=MessageResponse)
async def delete_permission(
    name: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("manage_permissions")),
) -> MessageResponse:
    _ensure_editable()

    result = await db.execute(select(Permission).where(Permission.name == name))
    permission = result.scalar_one_or_none()
    if permission is None:
        raise HTTPException(status_code=404, detail="Permission not found")
    if permission.is_system:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot delete system permissions",
        )

    await db.execute(sa_delete(RolePermission).where(RolePermission.permission_id == permission.id))
    await db.execute(sa_delete(Permission).where(Permission.id == permission.id))
    log_activity(
        db,
        action=PERMISSION_DELETED,
        entity_type="permission",
        entity_id=name,
        description=f"Deleted permission {name}",
        user_id=current_user.id,
    )
    await db.commit()
    await refresh_permission_table(db)
    return MessageResponse(message=f"Permission {name} deleted")


# ── Matrix ──────────────────────────────────────────────────────────
@router.get("/matrix", response_model=dict[str, list[str]])
async def get_permission_matrix(
    _user: User = Depends(get_current_active_user),
) -> dict[str, list[str]]:
    """Role name → granted permission names, as the guards see it."""
    return permission_table.matrix()


@router.put("/matrix", response_model=dict[str, list[str]])
async def replace_permission_matrix(
    body: MatrixUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("manage_permissions")),
) -> dict[str, list[str]]:
    """Replace the grants of every role named in the body, atomically.

    Roles not named keep their grants.
    """
    roles = {
        r.name: r
        for r in (
            await db.execute(select(Role).where(Role.name.in_(list(body.permissions))))
        ).scalars()
    }
    unknown_roles = sorted(set(body.permissions) - set(roles))
    if unknown_roles:
        raise HTTPException(status_code=400, detail=f"Unknown roles: {', '.join(unknown_roles)}")

    wanted = {p for perms in body.permissions.values() for p in perms}
    perm_ids = dict(
        (await db.execute(select(Permission.name, Permission.id).where(Permission.name.in_(wanted)))).all()
    )
    unknown_perms = sorted(wanted - set(perm_ids))
    if unknown_perms:
        raise HTTPException(
            status_code=400, detail=f"Unknown permissions: {', '.join(unknown_perms)}"
        )

    role_ids = [r.id for r in roles.values()]
    await db.execute(sa_delete(RolePermission).where(RolePermission.role_id.in_(role_ids)))
    db.add_all(
        RolePermission(role_id=roles[role_name].id, permission_id=perm_ids[perm])
        for role_name, perms in body.permissions.items()
        for perm in sorted(set(perms))
    )
    log_activity(
        db,
        action=MATRIX_UPDATED,
        entity_type="permission",
        entity_id="matrix",
        description=f"Replaced grants for roles: {', '.join(sorted(roles))}",
        user_id=current_user.id,
    )
    await db.commit()
    await refresh_permission_table(db)
    logger.info("Permission matrix updated by user %s", current_user.id)
    return permission_table.matrix()
