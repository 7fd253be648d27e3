"""
Project & TeamMember models.

Only the membership side is modelled here: analytics endpoints accept a
``projectId`` and scope their user set to the project's members.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String,
                        UniqueConstraint)
from sqlalchemy.orm import relationship

from crewdesk.db.base import Base


class Project(Base):
    __tablename__ = "projects"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    members = relationship(
        "TeamMember",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_team_member"),)

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    project_id: int = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # type: ignore[assignment]

    project = relationship("Project", back_populates="members")
