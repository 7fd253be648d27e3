"""
Permission lookups for the calling user (used by the UI to gate controls).

Advisory only: every mutating endpoint re-checks on the server.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from crewdesk.api.v1.deps import get_current_active_user
from crewdesk.core.permissions import permission_table
from crewdesk.models.user import User
from crewdesk.schemas.permission import (MyPermissionsResponse,
                                         PermissionCheckResponse)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    current_user: User = Depends(get_current_active_user),
) -> MyPermissionsResponse:
    return MyPermissionsResponse(
        role=current_user.role,
        permissions=sorted(permission_table.get_permissions_for_role(current_user.role)),
    )


@router.get("/check-permission", response_model=PermissionCheckResponse)
async def check_permission(
    permission: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_active_user),
) -> PermissionCheckResponse:
    return PermissionCheckResponse(
        permission=permission,
        allowed=permission_table.has_permission(current_user.role, permission),
    )
