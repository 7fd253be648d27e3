"""Pydantic schemas for attendance records, adjustments and the audit log."""

from __future__ import annotations

from datetime import datetime

from pydantic import field_validator

from crewdesk.schemas.common import CamelModel, Pagination


# ── Check-in / check-out ────────────────────────────────────────────
class CheckInRequest(CamelModel):
    notes: str | None = None


class CheckOutRequest(CamelModel):
    attendance_id: int | None = None
    notes: str | None = None


class AttendanceRead(CamelModel):
    id: int
    user_id: int
    check_in_time: datetime
    check_out_time: datetime | None = None
    total_hours: float | None = None
    auto_checkout: bool = False
    adjusted_by_id: int | None = None
    adjustment_reason: str | None = None
    notes: str | None = None


class AttendanceActionResponse(CamelModel):
    message: str
    attendance: AttendanceRead
    was_auto_checkout: bool | None = None


class CurrentAttendanceResponse(CamelModel):
    message: str
    attendance: AttendanceRead | None = None


class AttendanceHistoryResponse(CamelModel):
    attendance: list[AttendanceRead]
    pagination: Pagination


# ── Adjustment ──────────────────────────────────────────────────────
class AttendanceAdjustRequest(CamelModel):
    attendance_id: int
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    adjustment_reason: str

    @field_validator("adjustment_reason")
    @classmethod
    def _reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Adjustment reason must not be empty")
        if len(v) > 500:
            raise ValueError("Adjustment reason must not exceed 500 characters")
        return v


# ── Personal stats ──────────────────────────────────────────────────
class PersonalStats(CamelModel):
    period: str
    start_date: str
    end_date: str
    total_hours: float
    average_hours: float
    attendance_days: int
    total_working_days: int
    attendance_rate: float
    on_time_count: int
    on_time_rate: float


class PersonalStatsResponse(CamelModel):
    stats: PersonalStats


# ── Today (dashboard cards) ─────────────────────────────────────────
class TodayCountsResponse(CamelModel):
    date: str
    present: int
    late: int
    absent: int


# ── Audit log ───────────────────────────────────────────────────────
class ActivityLogRead(CamelModel):
    id: int
    action: str
    entity_type: str
    entity_id: str
    description: str
    user_id: int
    user_name: str | None = None
    created_at: datetime | None = None


class AuditLogResponse(CamelModel):
    audit_logs: list[ActivityLogRead]
    pagination: Pagination
