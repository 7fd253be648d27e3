"""
Role catalogue — list, create and delete roles.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.api.v1.deps import (get_current_active_user, get_db,
                                  require_permission)
from crewdesk.core.permissions import permission_table
from crewdesk.models.permission import Permission, Role, RolePermission
from crewdesk.models.user import User
from crewdesk.schemas.common import MessageResponse
from crewdesk.schemas.permission import RoleCreate, RoleRead
from crewdesk.services.activity_log import (ROLE_CREATED, ROLE_DELETED,
                                            log_activity)
from crewdesk.services.permission_store import refresh_permission_table

router = APIRouter(prefix="/roles", tags=["roles"])
logger = logging.getLogger(__name__)


def _role_read(role: Role) -> RoleRead:
    return RoleRead(
        id=role.id,
        name=role.name,
        description=role.description,
        is_system=role.is_system,
        permissions=sorted(permission_table.get_permissions_for_role(role.name)),
    )


@router.get("", response_model=list[RoleRead])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_active_user),
) -> list[RoleRead]:
    result = await db.execute(select(Role).order_by(Role.id))
    return [_role_read(r) for r in result.scalars().all()]


@router.post("", response_model=RoleRead, status_code=201)
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("manage_roles")),
) -> RoleRead:
    existing = await db.execute(select(Role.id).where(Role.name == body.name))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Role already exists")

    wanted = set(body.permissions)
    perm_ids = dict(
        (await db.execute(select(Permission.name, Permission.id).where(Permission.name.in_(wanted)))).all()
    )
    unknown = sorted(wanted - set(perm_ids))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown permissions: {', '.join(unknown)}")

    role = Role(name=body.name, description=body.description, is_system=False)
    db.add(role)
    await db.flush()
    db.add_all(RolePermission(role_id=role.id, permission_id=perm_ids[p]) for p in sorted(wanted))
    log_activity(
        db,
        action=ROLE_CREATED,
        entity_type="role",
        entity_id=role.name,
        description=f"Created role {role.name} with {len(wanted)} permissions",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(role)
    await refresh_permission_table(db)
    return _role_read(role)


@router.delete("/{name}", response_model=MessageResponse)
async def delete_role(
    name: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_permission("manage_roles")),
) -> MessageResponse:
    result = await db.execute(select(Role).where(Role.name == name))
    role = result.scalar_one_or_none()
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")
    if role.is_system:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot delete system roles",
        )

    in_use = (
        await db.execute(select(func.count(User.id)).where(User.role == name))
    ).scalar_one()
    if in_use:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Role is still assigned to {in_use} user(s)",
        )

    await db.execute(sa_delete(RolePermission).where(RolePermission.role_id == role.id))
    await db.execute(sa_delete(Role).where(Role.id == role.id))
    log_activity(
        db,
        action=ROLE_DELETED,
        entity_type="role",
        entity_id=name,
        description=f"Deleted role {name}",
        user_id=current_user.id,
    )
    await db.commit()
    await refresh_permission_table(db)
    return MessageResponse(message=f"Role {name} deleted")
