"""
Attendance models — check-in/check-out records and exception review state.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Index, Integer,
                        Numeric, String)
from sqlalchemy.orm import relationship

from crewdesk.db.base import Base


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (Index("ix_attendance_user_check_in", "user_id", "check_in_time"),)

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    check_in_time: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    check_out_time: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    # Capped at MAX_WORKING_HOURS_PER_DAY; NULL while the session is open
    total_hours: float | None = Column(Numeric(5, 2, asdecimal=False), nullable=True)  # type: ignore[assignment]
    auto_checkout: bool = Column(Boolean, nullable=False, default=False, server_default="false")  # type: ignore[assignment]
    adjusted_by_id: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    adjustment_reason: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    notes: str | None = Column(String(500), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = relationship("User", foreign_keys=[user_id])


class AttendanceException(Base):
    """Review state of a computed exception.

    Exceptions themselves are derived from attendance records on every
    request; a row only exists once somebody acknowledged or resolved one.
    """

    __tablename__ = "attendance_exceptions"

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    key: str = Column(String(80), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False)  # type: ignore[assignment]
    date: str = Column(String(10), nullable=False)  # type: ignore[assignment]  # YYYY-MM-DD
    type: str = Column(String(20), nullable=False)  # type: ignore[assignment]
    # absent | late | forgot_checkout | pattern
    status: str = Column(String(20), nullable=False, default="new")  # type: ignore[assignment]
    # new | acknowledged | resolved
    acknowledged_by_id: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    acknowledged_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    resolved_by_id: int | None = Column(Integer, ForeignKey("users.id"), nullable=True)  # type: ignore[assignment]
    resolved_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
