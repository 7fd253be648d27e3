"""
Row fetching for the attendance endpoints.

Each helper issues a single query; aggregation happens afterwards in
``attendance_analytics``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewdesk.core.permissions import ADMIN_ROLE
from crewdesk.models.attendance import AttendanceRecord
from crewdesk.models.project import Project, TeamMember
from crewdesk.models.user import User
from crewdesk.services.attendance_analytics import AttendanceRules


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


async def project_exists(db: AsyncSession, project_id: int) -> bool:
    result = await db.execute(select(Project.id).where(Project.id == project_id))
    return result.scalar_one_or_none() is not None


async def resolve_members(db: AsyncSession, project_id: int | None = None) -> list[User]:
    """Users an analytics query covers.

    With a project: its members. Without: every active non-admin user.
    """
    if project_id is not None:
        stmt = (
            select(User)
            .join(TeamMember, TeamMember.user_id == User.id)
            .where(TeamMember.project_id == project_id)
        )
    else:
        stmt = select(User).where(User.is_active.is_(True), User.role != ADMIN_ROLE)
    result = await db.execute(stmt.order_by(User.id))
    return list(result.scalars().all())


async def fetch_records(
    db: AsyncSession,
    user_ids: list[int],
    start: date,
    end: date,
    rules: AttendanceRules,
) -> list[AttendanceRecord]:
    """Records of ``user_ids`` whose local check-in date falls in ``[start, end]``."""
    if not user_ids:
        return []
    lower, _ = rules.day_bounds_utc(start)
    _, upper = rules.day_bounds_utc(end)
    result = await db.execute(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.user_id.in_(user_ids),
            AttendanceRecord.check_in_time >= lower,
            AttendanceRecord.check_in_time < upper,
        )
        .order_by(AttendanceRecord.check_in_time.asc(), AttendanceRecord.id.asc())
    )
    return list(result.scalars().all())


async def open_session(db: AsyncSession, user_id: int) -> AttendanceRecord | None:
    """Latest record of ``user_id`` that has no check-out yet."""
    result = await db.execute(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.user_id == user_id,
            AttendanceRecord.check_out_time.is_(None),
        )
        .order_by(AttendanceRecord.check_in_time.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()
