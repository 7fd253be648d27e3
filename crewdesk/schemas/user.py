"""Pydantic schemas for users and auth tokens."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, field_validator

from crewdesk.schemas.common import CamelModel

ROLE_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{1,49}$")


def _check_role_name(v: str) -> str:
    v = v.strip().lower()
    if not ROLE_NAME_RE.match(v):
        raise ValueError("Role must be 2-50 lowercase letters, digits or underscores")
    return v


# ── Users ───────────────────────────────────────────────────────────
class UserCreate(CamelModel):
    email: str
    password: str
    full_name: str | None = None
    department: str | None = None
    role: str = "user"

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str) -> str:
        return _check_role_name(v)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


class UserRead(CamelModel):
    id: int
    email: str
    full_name: str | None
    department: str | None = None
    role: str
    is_active: bool
    created_at: datetime | None


class UserUpdate(CamelModel):
    full_name: str | None = None
    department: str | None = None
    role: str | None = None
    is_active: bool | None = None
    password: str | None = None

    @field_validator("role")
    @classmethod
    def _validate_role(cls, v: str | None) -> str | None:
        return _check_role_name(v) if v is not None else None


# ── Tokens ──────────────────────────────────────────────────────────
# OAuth2 field names are fixed by the protocol, so no camelCase here.
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str
