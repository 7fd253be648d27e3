"""
ActivityLog model — append-only audit trail of mutating operations.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from crewdesk.db.base import Base


class ActivityLog(Base):
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_entity", "entity_type", "entity_id"),
        Index("ix_activity_user_created", "user_id", "created_at"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    action: str = Column(String(50), nullable=False, index=True)  # type: ignore[assignment]
    entity_type: str = Column(String(50), nullable=False)  # type: ignore[assignment]
    entity_id: str = Column(String(80), nullable=False)  # type: ignore[assignment]
    description: str = Column(String(1000), nullable=False)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
