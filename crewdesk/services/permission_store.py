"""
Database side of the permission table: first-run seeding and reloads.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.core.permissions import (DEFAULT_MATRIX, PERMISSIONS,
                                       SYSTEM_ROLES, describe_permission,
                                       permission_table)
from crewdesk.models.permission import Permission, Role, RolePermission

logger = logging.getLogger(__name__)


async def seed_permissions(db: AsyncSession) -> bool:
    """Insert the built-in roles, permissions and grants on an empty database.

    Returns ``True`` when rows were written.
    """
    existing = await db.execute(select(func.count(Role.id)))
    if existing.scalar():
        return False

    permissions = {
        name: Permission(
            name=name,
            description=describe_permission(name),
            category=category,
            is_system=True,
        )
        for name, category in PERMISSIONS.items()
    }
    db.add_all(permissions.values())

    for role_name, description in SYSTEM_ROLES.items():
        role = Role(name=role_name, description=description, is_system=True)
        role.grants = [
            RolePermission(permission=permissions[p])
            for p in sorted(DEFAULT_MATRIX.get(role_name, ()))
        ]
        db.add(role)

    await db.commit()
    logger.info(
        "Seeded %d system roles and %d permissions", len(SYSTEM_ROLES), len(permissions)
    )
    return True


async def load_matrix(db: AsyncSession) -> dict[str, set[str]]:
    """Read role → permission names; roles without grants map to an empty set."""
    matrix: dict[str, set[str]] = {}

    roles = await db.execute(select(Role.name))
    for (name,) in roles.all():
        matrix.setdefault(name, set())

    grants = await db.execute(
        select(Role.name, Permission.name)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .join(Permission, RolePermission.permission_id == Permission.id)
    )
    for role_name, perm_name in grants.all():
        matrix.setdefault(role_name, set()).add(perm_name)
    return matrix


async def refresh_permission_table(db: AsyncSession) -> None:
    """Reload the in-process table from the database."""
    permission_table.load(await load_matrix(db))
