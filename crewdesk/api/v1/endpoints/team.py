"""
Team attendance endpoints.

Reads need ``view_team_attendance``; adjustments and exception review need
``attendance_management``.

Same shape as every reporting endpoint here: one query for the user set,
one for the records in the window, aggregation in Python.
"""

from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.api.v1.deps import (get_db, get_rules,
                                  require_attendance_manager,
                                  require_attendance_viewer)
from crewdesk.models.activity import ActivityLog
from crewdesk.models.attendance import AttendanceException, AttendanceRecord
from crewdesk.models.user import User
from crewdesk.schemas.analytics import (ExceptionListResponse, ExceptionRead,
                                        ExceptionStatusResponse,
                                        ExceptionStatusUpdate,
                                        TeamAnalyticsResponse)
from crewdesk.schemas.attendance import (ActivityLogRead,
                                         AttendanceActionResponse,
                                         AttendanceAdjustRequest,
                                         AttendanceRead, AuditLogResponse,
                                         TodayCountsResponse)
from crewdesk.services.activity_log import (ATTENDANCE_ADJUSTED,
                                            EXCEPTION_STATUS, log_activity)
from crewdesk.services.attendance_analytics import (AttendanceRules,
                                                    ExceptionKey,
                                                    build_team_analytics,
                                                    compute_total_hours,
                                                    count_exceptions,
                                                    detect_exceptions,
                                                    ensure_utc,
                                                    parse_exception_key,
                                                    today_counts)
from crewdesk.services.attendance_queries import (fetch_records, now_utc,
                                                  project_exists,
                                                  resolve_members)

router = APIRouter(prefix="/attendance", tags=["team attendance"])
logger = logging.getLogger(__name__)

ExceptionType = Literal["absent", "late", "forgot_checkout", "pattern"]

# Default exception window, also used to re-derive pattern keys
EXCEPTION_WINDOW_DAYS = 30


# ── Helpers ─────────────────────────────────────────────────────────
async def _members(db: AsyncSession, project_id: int | None) -> list[User]:
    if project_id is not None and not await project_exists(db, project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return await resolve_members(db, project_id)


def _check_window(start: date, end: date) -> None:
    if start > end:
        raise HTTPException(status_code=400, detail="startDate must not be after endDate")


async def _user_day_exception_exists(
    db: AsyncSession,
    user: User,
    exception_id: str,
    key: ExceptionKey,
    today: date,
    rules: AttendanceRules,
) -> bool:
    """Re-run detection for the key's user and day and look for the same id."""
    if key.day > today:
        return False
    if key.type == "absent":
        start, as_of = key.day, today
    else:
        # patterns are dated the day they were listed
        start, as_of = key.day - timedelta(days=EXCEPTION_WINDOW_DAYS - 1), key.day
    records = await fetch_records(db, [user.id], start, key.day, rules)
    found = detect_exceptions([user], records, start, key.day, as_of, rules)
    return any(e["id"] == exception_id for e in found)


def _exception_read(row: AttendanceException) -> ExceptionRead:
    return ExceptionRead(
        id=row.key,
        user_id=row.user_id,
        date=row.date,
        type=row.type,
        status=row.status,
        acknowledged_by_id=row.acknowledged_by_id,
        acknowledged_at=row.acknowledged_at,
        resolved_by_id=row.resolved_by_id,
        resolved_at=row.resolved_at,
        updated_at=row.updated_at,
    )


# ── Exceptions ──────────────────────────────────────────────────────
@router.get("/exceptions", response_model=ExceptionListResponse)
async def list_exceptions(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    exception_type: ExceptionType | None = Query(None, alias="type"),
    project_id: int | None = Query(None, alias="projectId"),
    db: AsyncSession = Depends(get_db),
    _viewer: User = Depends(require_attendance_viewer),
    rules: AttendanceRules = Depends(get_rules),
) -> ExceptionListResponse:
    """Absences, late arrivals, forgotten check-outs and tardiness patterns.

    Window defaults to the 30 days ending today.
    """
    today = rules.local_date(now_utc())
    end = end_date or today
    start = start_date or end - timedelta(days=EXCEPTION_WINDOW_DAYS - 1)
    _check_window(start, end)

    members = await _members(db, project_id)
    records = await fetch_records(db, [m.id for m in members], start, end, rules)
    exceptions = detect_exceptions(members, records, start, end, today, rules)

    if exceptions:
        stored = await db.execute(
            select(AttendanceException.key, AttendanceException.status).where(
                AttendanceException.key.in_([e["id"] for e in exceptions])
            )
        )
        statuses = dict(stored.all())
        for exc in exceptions:
            exc["status"] = statuses.get(exc["id"], "new")

    counts = count_exceptions(exceptions)
    if exception_type is not None:
        exceptions = [e for e in exceptions if e["type"] == exception_type]

    return ExceptionListResponse(exceptions=exceptions, counts=counts)


@router.patch("/exceptions/{exception_id}", response_model=ExceptionStatusResponse)
async def update_exception_status(
    exception_id: str,
    body: ExceptionStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_attendance_manager),
    rules: AttendanceRules = Depends(get_rules),
) -> ExceptionStatusResponse:
    """Acknowledge, resolve or reopen one computed exception."""
    try:
        key = parse_exception_key(exception_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Exception not found") from None

    if key.day is None:
        record = await db.get(AttendanceRecord, key.ref_id)
        still_applies = record is not None and (
            record.auto_checkout
            if key.type == "forgot_checkout"
            else not rules.is_on_time(record.check_in_time)
        )
        if not still_applies:
            raise HTTPException(status_code=404, detail="Exception not found")
        user_id = record.user_id
        day = rules.local_date(record.check_in_time)
    else:
        user = await db.get(User, key.ref_id)
        if user is None or not await _user_day_exception_exists(
            db, user, exception_id, key, rules.local_date(now_utc()), rules
        ):
            raise HTTPException(status_code=404, detail="Exception not found")
        user_id, day = key.ref_id, key.day

    result = await db.execute(
        select(AttendanceException).where(AttendanceException.key == exception_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = AttendanceException(
            key=exception_id, user_id=user_id, date=day.isoformat(), type=key.type
        )
        db.add(row)

    now = now_utc()
    row.status = body.status
    if body.status == "acknowledged":
        row.acknowledged_by_id = current_user.id
        row.acknowledged_at = now
    elif body.status == "resolved":
        row.resolved_by_id = current_user.id
        row.resolved_at = now
    else:
        row.acknowledged_by_id = row.acknowledged_at = None
        row.resolved_by_id = row.resolved_at = None

    log_activity(
        db,
        action=EXCEPTION_STATUS,
        entity_type="attendance",
        entity_id=exception_id,
        description=f"Marked {key.type} exception for user {user_id} on {day} as {body.status}",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(row)

    return ExceptionStatusResponse(
        message=f"Exception marked as {body.status}",
        exception=_exception_read(row),
    )


# ── Team analytics ──────────────────────────────────────────────────
@router.get("/team/analytics", response_model=TeamAnalyticsResponse)
async def team_analytics(
    days: int = Query(30, ge=1, le=365),
    project_id: int | None = Query(None, alias="projectId"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
    _viewer: User = Depends(require_attendance_viewer),
    rules: AttendanceRules = Depends(get_rules),
) -> TeamAnalyticsResponse:
    """Team-wide and per-user hours, attendance and punctuality.

    The window is the last ``days`` days including today unless
    ``startDate``/``endDate`` are given.
    """
    today = rules.local_date(now_utc())
    end = end_date or today
    start = start_date or end - timedelta(days=days - 1)
    _check_window(start, end)

    members = await _members(db, project_id)
    records = await fetch_records(db, [m.id for m in members], start, end, rules)

    return TeamAnalyticsResponse(
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        analytics=build_team_analytics(members, records, start, end, rules),
    )


@router.get("/today/counts", response_model=TodayCountsResponse)
async def today_attendance_counts(
    project_id: int | None = Query(None, alias="projectId"),
    db: AsyncSession = Depends(get_db),
    _viewer: User = Depends(require_attendance_viewer),
    rules: AttendanceRules = Depends(get_rules),
) -> TodayCountsResponse:
    today = rules.local_date(now_utc())
    members = await _members(db, project_id)
    records = await fetch_records(db, [m.id for m in members], today, today, rules)
    return TodayCountsResponse(**today_counts(members, records, today, rules))


# ── Manual adjustment ───────────────────────────────────────────────
@router.post("/adjust", response_model=AttendanceActionResponse)
async def adjust_attendance(
    body: AttendanceAdjustRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_attendance_manager),
    rules: AttendanceRules = Depends(get_rules),
) -> AttendanceActionResponse:
    """Correct a record's check-in and/or check-out.

    Omitted times keep their stored value; total hours are recomputed from
    the resulting pair. No version check: the last adjustment wins.
    """
    record = await db.get(AttendanceRecord, body.attendance_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Attendance record not found")

    check_in = ensure_utc(body.check_in_time or record.check_in_time)
    check_out = body.check_out_time or record.check_out_time
    check_out = ensure_utc(check_out) if check_out is not None else None

    if check_out is not None and check_out <= check_in:
        raise HTTPException(
            status_code=400, detail="Check-out time must be after check-in time"
        )

    record.check_in_time = check_in
    record.check_out_time = check_out
    record.total_hours = (
        compute_total_hours(check_in, check_out, rules) if check_out is not None else None
    )
    record.auto_checkout = False
    record.adjusted_by_id = current_user.id
    record.adjustment_reason = body.adjustment_reason

    log_activity(
        db,
        action=ATTENDANCE_ADJUSTED,
        entity_type="attendance",
        entity_id=record.id,
        description=f"Adjusted attendance record: {body.adjustment_reason}",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(record)
    logger.info("Attendance %s adjusted by user %s", record.id, current_user.id)

    return AttendanceActionResponse(
        message="Attendance record adjusted successfully",
        attendance=AttendanceRead.model_validate(record),
    )


# ── Audit log ───────────────────────────────────────────────────────
@router.get("/audit-log", response_model=AuditLogResponse)
async def audit_log(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: int | None = Query(None, alias="userId"),
    action: str | None = Query(None),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
    _viewer: User = Depends(require_attendance_viewer),
    rules: AttendanceRules = Depends(get_rules),
) -> AuditLogResponse:
    """Attendance activity trail, newest first."""
    filters = [ActivityLog.entity_type == "attendance"]
    if user_id is not None:
        filters.append(ActivityLog.user_id == user_id)
    if action:
        filters.append(ActivityLog.action == action)
    if start_date:
        filters.append(ActivityLog.created_at >= rules.day_bounds_utc(start_date)[0])
    if end_date:
        filters.append(ActivityLog.created_at < rules.day_bounds_utc(end_date)[1])

    total = (
        await db.execute(select(func.count(ActivityLog.id)).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(ActivityLog, User.full_name)
        .join(User, ActivityLog.user_id == User.id)
        .where(*filters)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    logs = []
    for entry, user_name in result.all():
        item = ActivityLogRead.model_validate(entry)
        item.user_name = user_name
        logs.append(item)

    return AuditLogResponse(
        audit_logs=logs,
        pagination={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        },
    )
