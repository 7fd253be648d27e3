"""
Role / Permission models — the persisted side of the permission table.

Built-in rows carry ``is_system=True`` and cannot be deleted through the API.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String,
                        UniqueConstraint)
from sqlalchemy.orm import relationship

from crewdesk.db.base import Base


class Role(Base):
    __tablename__ = "roles"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(50), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    description: str | None = Column(String(300), nullable=True)  # type: ignore[assignment]
    is_system: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    grants = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(100), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    description: str | None = Column(String(300), nullable=True)  # type: ignore[assignment]
    category: str = Column(String(50), nullable=False, default="General")  # type: ignore[assignment]
    is_system: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]

    grants = relationship(
        "RolePermission",
        back_populates="permission",
        cascade="all, delete-orphan",
    )


class RolePermission(Base):
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    role_id: int = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)  # type: ignore[assignment]
    permission_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )

    role = relationship("Role", back_populates="grants")
    permission = relationship("Permission", back_populates="grants")
