"""Pydantic schemas for team analytics and attendance exceptions."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from crewdesk.schemas.common import CamelModel

ExceptionStatus = Literal["new", "acknowledged", "resolved"]


# ── Team analytics ──────────────────────────────────────────────────
class DailyStat(CamelModel):
    date: str
    total_hours: float
    attendance_count: int
    on_time_count: int
    is_business_day: bool


class UserStat(CamelModel):
    user_id: int
    name: str
    email: str
    department: str | None = None
    total_hours: float
    attendance_days: int
    average_hours_per_day: float
    attendance_rate: float
    on_time_count: int
    on_time_rate: float


class TeamAnalytics(CamelModel):
    total_members: int
    active_members: int
    total_hours: float
    average_hours_per_day: float
    attendance_rate: float
    on_time_rate: float
    daily_stats: list[DailyStat]
    user_stats: list[UserStat]


class TeamAnalyticsResponse(CamelModel):
    start_date: str
    end_date: str
    analytics: TeamAnalytics


# ── Exceptions ──────────────────────────────────────────────────────
class AttendanceExceptionItem(CamelModel):
    id: str
    user_id: int
    user_name: str
    user_email: str
    department: str
    date: str
    type: str
    details: str
    status: ExceptionStatus = "new"


class ExceptionListResponse(CamelModel):
    exceptions: list[AttendanceExceptionItem]
    # keys stay as the exception type names (absent, late, forgot_checkout, pattern)
    counts: dict[str, int]


class ExceptionStatusUpdate(CamelModel):
    status: ExceptionStatus


class ExceptionRead(CamelModel):
    id: str
    user_id: int
    date: str
    type: str
    status: ExceptionStatus
    acknowledged_by_id: int | None = None
    acknowledged_at: datetime | None = None
    resolved_by_id: int | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None


class ExceptionStatusResponse(CamelModel):
    message: str
    exception: ExceptionRead
