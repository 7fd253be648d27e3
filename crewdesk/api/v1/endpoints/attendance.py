"""
Personal attendance endpoints — check-in, check-out, current session,
history and period statistics for the calling user.
"""

from __future__ import annotations

import logging
import math
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.api.v1.deps import get_current_active_user, get_db, get_rules
from crewdesk.models.attendance import AttendanceRecord
from crewdesk.models.user import User
from crewdesk.schemas.attendance import (AttendanceActionResponse,
                                         AttendanceHistoryResponse,
                                         AttendanceRead, CheckInRequest,
                                         CheckOutRequest,
                                         CurrentAttendanceResponse,
                                         PersonalStatsResponse)
from crewdesk.services.activity_log import (AUTO_CHECKOUT, CHECK_IN,
                                            CHECK_OUT, log_activity)
from crewdesk.services.attendance_analytics import (AttendanceRules,
                                                    StatsPeriod,
                                                    auto_checkout_time,
                                                    build_personal_stats,
                                                    compute_total_hours,
                                                    period_window)
from crewdesk.services.attendance_queries import (fetch_records, now_utc,
                                                  open_session)

router = APIRouter(prefix="/attendance", tags=["attendance"])
logger = logging.getLogger(__name__)


def _close_session(
    record: AttendanceRecord,
    rules: AttendanceRules,
    db: AsyncSession,
    user_id: int,
) -> bool:
    """Stamp check-out on ``record``; returns True when it was an auto-checkout."""
    now = now_utc()
    auto = rules.local_date(record.check_in_time) != rules.local_date(now)
    check_out = auto_checkout_time(record.check_in_time, rules) if auto else now

    record.check_out_time = check_out
    record.total_hours = compute_total_hours(record.check_in_time, check_out, rules)
    record.auto_checkout = auto

    log_activity(
        db,
        action=AUTO_CHECKOUT if auto else CHECK_OUT,
        entity_type="attendance",
        entity_id=record.id,
        description=(
            f"System applied automatic checkout ({record.total_hours} hours) for past check-in"
            if auto
            else f"User checked out after {record.total_hours} hours"
        ),
        user_id=user_id,
    )
    return auto


# ── Check-in / check-out ────────────────────────────────────────────
@router.post("/check-in", response_model=AttendanceActionResponse, status_code=201)
async def check_in(
    body: CheckInRequest | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    rules: AttendanceRules = Depends(get_rules),
) -> AttendanceActionResponse:
    """Open a new work session.

    A session still open from an earlier day is closed with an automatic
    checkout first; one open today blocks the check-in.
    """
    previous = await open_session(db, current_user.id)
    if previous is not None:
        if rules.local_date(previous.check_in_time) == rules.local_date(now_utc()):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="You are already checked in",
            )
        _close_session(previous, rules, db, current_user.id)

    record = AttendanceRecord(
        user_id=current_user.id,
        check_in_time=now_utc(),
        notes=body.notes if body else None,
    )
    db.add(record)
    await db.flush()
    log_activity(
        db,
        action=CHECK_IN,
        entity_type="attendance",
        entity_id=record.id,
        description="User checked in",
        user_id=current_user.id,
    )
    await db.commit()
    await db.refresh(record)
    logger.info("User %s checked in (attendance %s)", current_user.id, record.id)

    return AttendanceActionResponse(
        message="Check-in successful",
        attendance=AttendanceRead.model_validate(record),
    )


@router.post("/check-out", response_model=AttendanceActionResponse)
async def check_out(
    body: CheckOutRequest | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    rules: AttendanceRules = Depends(get_rules),
) -> AttendanceActionResponse:
    """Close the caller's open session (or the one named by ``attendanceId``)."""
    if body and body.attendance_id is not None:
        record = await db.get(AttendanceRecord, body.attendance_id)
    else:
        record = await open_session(db, current_user.id)

    if record is None:
        raise HTTPException(status_code=404, detail="No active check-in found")
    if record.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only check out of your own attendance records",
        )
    if record.check_out_time is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already checked out")

    if body and body.notes:
        record.notes = body.notes
    auto = _close_session(record, rules, db, current_user.id)
    await db.commit()
    await db.refresh(record)

    return AttendanceActionResponse(
        message="Check-out successful",
        attendance=AttendanceRead.model_validate(record),
        was_auto_checkout=auto,
    )


# ── Reads ───────────────────────────────────────────────────────────
@router.get("/current", response_model=CurrentAttendanceResponse)
async def current_attendance(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
) -> CurrentAttendanceResponse:
    record = await open_session(db, current_user.id)
    if record is None:
        return CurrentAttendanceResponse(message="Not checked in")
    return CurrentAttendanceResponse(
        message="Currently checked in",
        attendance=AttendanceRead.model_validate(record),
    )


@router.get("/history", response_model=AttendanceHistoryResponse)
async def attendance_history(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    rules: AttendanceRules = Depends(get_rules),
) -> AttendanceHistoryResponse:
    """Own records, newest first."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="startDate must not be after endDate")

    filters = [AttendanceRecord.user_id == current_user.id]
    if start_date:
        filters.append(AttendanceRecord.check_in_time >= rules.day_bounds_utc(start_date)[0])
    if end_date:
        filters.append(AttendanceRecord.check_in_time < rules.day_bounds_utc(end_date)[1])

    total = (
        await db.execute(select(func.count(AttendanceRecord.id)).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(AttendanceRecord)
        .where(*filters)
        .order_by(AttendanceRecord.check_in_time.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return AttendanceHistoryResponse(
        attendance=[AttendanceRead.model_validate(r) for r in result.scalars().all()],
        pagination={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        },
    )


@router.get("/stats", response_model=PersonalStatsResponse)
async def attendance_stats(
    period: StatsPeriod = Query("month"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
    rules: AttendanceRules = Depends(get_rules),
) -> PersonalStatsResponse:
    """Personal totals for the current day, week, month or year."""
    today = rules.local_date(now_utc())
    start, end = period_window(period, today)
    records = await fetch_records(db, [current_user.id], start, end, rules)
    stats = build_personal_stats(current_user, records, start, end, rules)

    return PersonalStatsResponse(
        stats={
            "period": period,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_hours": stats["total_hours"],
            "average_hours": stats["average_hours_per_day"],
            "attendance_days": stats["attendance_days"],
            "total_working_days": stats["total_working_days"],
            "attendance_rate": stats["attendance_rate"],
            "on_time_count": stats["on_time_count"],
            "on_time_rate": stats["on_time_rate"],
        }
    )
