"""Pydantic schemas for roles, permissions and the permission matrix."""

from __future__ import annotations

import re

from pydantic import Field, field_validator

from crewdesk.schemas.common import CamelModel
from crewdesk.schemas.user import ROLE_NAME_RE

_PERMISSION_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{1,99}$")


class PermissionRead(CamelModel):
    id: int
    name: str
    description: str | None = None
    category: str
    is_system: bool


class PermissionCreate(CamelModel):
    name: str
    description: str | None = None
    category: str = "General"

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip().lower()
        if not _PERMISSION_NAME_RE.match(v):
            raise ValueError(
                "Permission name must be 2-100 lowercase letters, digits or underscores"
            )
        return v


class RoleRead(CamelModel):
    id: int
    name: str
    description: str | None = None
    is_system: bool
    permissions: list[str] = Field(default_factory=list)


class RoleCreate(CamelModel):
    name: str
    description: str | None = None
    permissions: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip().lower()
        if not ROLE_NAME_RE.match(v):
            raise ValueError("Role name must be 2-50 lowercase letters, digits or underscores")
        return v


class MatrixUpdate(CamelModel):
    # role name -> full list of granted permission names
    permissions: dict[str, list[str]]


class MyPermissionsResponse(CamelModel):
    role: str
    permissions: list[str]


class PermissionCheckResponse(CamelModel):
    permission: str
    allowed: bool
