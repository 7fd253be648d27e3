"""
Attendance aggregation & exception detection.

Everything here is a pure function over rows the endpoints already fetched
(one query per request, aggregated in Python). Nothing in this module
touches the database or the clock: "today" and the rules are passed in.

Two consumers share the on-time predicate and must stay separate:

* rates (``build_team_analytics``) judge a user-day by its **earliest**
  check-in only;
* exception listing (``detect_exceptions``) judges **every** record, so a
  user with two late check-ins on one day yields two ``late`` exceptions.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal

from crewdesk.core.config import Settings
from crewdesk.models.attendance import AttendanceRecord
from crewdesk.models.user import User

EXCEPTION_TYPES = ("absent", "late", "forgot_checkout", "pattern")
_TYPE_ORDER = {t: i for i, t in enumerate(EXCEPTION_TYPES)}


# ── Helpers ─────────────────────────────────────────────────────────
def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_utc_offset(offset: str) -> timezone:
    """Turn ``"+05:00"`` / ``"-03:30"`` / ``"+02"`` into a fixed timezone."""
    sign = 1 if offset[0] == "+" else -1
    parts = offset[1:].split(":")
    hours = int(parts[0])
    minutes = int(parts[1]) if len(parts) > 1 else 0
    return timezone(timedelta(hours=sign * hours, minutes=sign * minutes))


def round2(value: float) -> float:
    """Half-up rounding to 2 decimals (``0.125 -> 0.13``)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def percentage(part: float, whole: float) -> float:
    return round2(part / whole * 100) if whole > 0 else 0.0


def iter_dates(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


StatsPeriod = Literal["day", "week", "month", "year"]


def period_window(period: StatsPeriod, today: date) -> tuple[date, date]:
    """Calendar window ending today; weeks start on Monday."""
    if period == "day":
        return today, today
    if period == "week":
        return today - timedelta(days=today.weekday()), today
    if period == "year":
        return today.replace(month=1, day=1), today
    if period == "month":
        return today.replace(day=1), today
    raise ValueError(f"Unknown period: {period}")


# ── Rules ───────────────────────────────────────────────────────────
@dataclass(frozen=True)
class AttendanceRules:
    """Work-day constants shared by every attendance computation."""

    max_hours_per_day: float = 12
    work_start_hour: int = 9
    work_start_minute: int = 0
    late_threshold_minutes: int = 15
    weekend_days: frozenset[int] = frozenset({5, 6})
    pattern_threshold: int = 3
    default_checkout_hours: int = 8
    tz: timezone = timezone.utc

    @classmethod
    def from_settings(cls, s: Settings) -> AttendanceRules:
        return cls(
            max_hours_per_day=s.MAX_WORKING_HOURS_PER_DAY,
            work_start_hour=s.WORK_START_HOUR,
            work_start_minute=s.WORK_START_MINUTE,
            late_threshold_minutes=s.LATE_THRESHOLD_MINUTES,
            weekend_days=frozenset(s.WEEKEND_DAYS),
            pattern_threshold=s.PATTERN_THRESHOLD,
            default_checkout_hours=s.DEFAULT_CHECKOUT_HOURS,
            tz=parse_utc_offset(s.TIMEZONE_OFFSET),
        )

    def local(self, dt: datetime) -> datetime:
        return ensure_utc(dt).astimezone(self.tz)

    def local_date(self, dt: datetime) -> date:
        return self.local(dt).date()

    def day_bounds_utc(self, day: date) -> tuple[datetime, datetime]:
        """UTC instants of local midnight at the start of ``day`` and the next day."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)

    def is_business_day(self, day: date) -> bool:
        return day.weekday() not in self.weekend_days

    def is_on_time(self, check_in: datetime) -> bool:
        """On time iff the check-in minute is at or before start + grace."""
        local = self.local(check_in)
        cutoff = self.work_start_hour * 60 + self.work_start_minute + self.late_threshold_minutes
        return local.hour * 60 + local.minute <= cutoff

    def minutes_late(self, check_in: datetime) -> int:
        local = self.local(check_in)
        start = self.work_start_hour * 60 + self.work_start_minute
        return max(0, local.hour * 60 + local.minute - start)

    def business_days(self, start: date, end: date) -> list[date]:
        return [d for d in iter_dates(start, end) if self.is_business_day(d)]


def compute_total_hours(
    check_in: datetime, check_out: datetime, rules: AttendanceRules
) -> float:
    """Hours of one closed session, capped at the daily maximum."""
    seconds = (ensure_utc(check_out) - ensure_utc(check_in)).total_seconds()
    return round2(min(max(0.0, seconds / 3600), rules.max_hours_per_day))


def auto_checkout_time(check_in: datetime, rules: AttendanceRules) -> datetime:
    """System checkout for a session left open past its day.

    ``check_in + default_checkout_hours``, but never past the last second of
    the check-in's local day.
    """
    check_in = ensure_utc(check_in)
    _, next_midnight = rules.day_bounds_utc(rules.local_date(check_in))
    return min(
        check_in + timedelta(hours=rules.default_checkout_hours),
        next_midnight - timedelta(seconds=1),
    )


# ── Aggregation ─────────────────────────────────────────────────────
@dataclass
class DaySummary:
    hours: float | None
    on_time: bool


def summarize_user_days(
    records: Iterable[AttendanceRecord],
    start: date,
    end: date,
    rules: AttendanceRules,
) -> dict[tuple[int, date], DaySummary]:
    """Collapse raw records into one summary per (user, local date).

    Hours are summed across the day's records and capped *after* summing;
    punctuality comes from the earliest check-in of the day only.
    """
    groups: dict[tuple[int, date], list[AttendanceRecord]] = defaultdict(list)
    for rec in records:
        day = rules.local_date(rec.check_in_time)
        if start <= day <= end:
            groups[(rec.user_id, day)].append(rec)

    summaries: dict[tuple[int, date], DaySummary] = {}
    for key, recs in groups.items():
        earliest = min(recs, key=lambda r: ensure_utc(r.check_in_time))
        with_hours = [r.total_hours for r in recs if r.total_hours is not None]
        hours = (
            round2(min(sum(with_hours), rules.max_hours_per_day)) if with_hours else None
        )
        summaries[key] = DaySummary(hours=hours, on_time=rules.is_on_time(earliest.check_in_time))
    return summaries


def empty_analytics() -> dict:
    return {
        "total_members": 0,
        "active_members": 0,
        "total_hours": 0.0,
        "average_hours_per_day": 0.0,
        "attendance_rate": 0.0,
        "on_time_rate": 0.0,
        "daily_stats": [],
        "user_stats": [],
    }


def _user_stats(
    user: User,
    days: list[DaySummary],
    business_day_count: int,
) -> dict:
    total = sum(d.hours for d in days if d.hours is not None)
    attendance_days = len(days)
    on_time = sum(1 for d in days if d.on_time)
    return {
        "user_id": user.id,
        "name": user.full_name or "",
        "email": user.email,
        "department": user.department,
        "total_hours": round2(total),
        "attendance_days": attendance_days,
        "average_hours_per_day": round2(total / attendance_days) if attendance_days else 0.0,
        "attendance_rate": percentage(attendance_days, business_day_count),
        "on_time_count": on_time,
        "on_time_rate": percentage(on_time, attendance_days),
    }


def build_team_analytics(
    members: list[User],
    records: Iterable[AttendanceRecord],
    start: date,
    end: date,
    rules: AttendanceRules,
) -> dict:
    """Team-wide and per-user statistics over ``[start, end]``."""
    if not members:
        return empty_analytics()

    member_ids = {m.id for m in members}
    summaries = summarize_user_days(
        (r for r in records if r.user_id in member_ids), start, end, rules
    )
    business_day_count = len(rules.business_days(start, end))

    by_user: dict[int, list[DaySummary]] = defaultdict(list)
    by_date: dict[date, list[DaySummary]] = defaultdict(list)
    for (user_id, day), summary in summaries.items():
        by_user[user_id].append(summary)
        by_date[day].append(summary)

    total_hours = sum(s.hours for s in summaries.values() if s.hours is not None)
    present = len(summaries)
    on_time = sum(1 for s in summaries.values() if s.on_time)
    active_members = len(by_user)

    daily_stats = [
        {
            "date": day.isoformat(),
            "total_hours": round2(sum(s.hours for s in by_date[day] if s.hours is not None)),
            "attendance_count": len(by_date[day]),
            "on_time_count": sum(1 for s in by_date[day] if s.on_time),
            "is_business_day": rules.is_business_day(day),
        }
        for day in iter_dates(start, end)
    ]

    user_stats = [_user_stats(m, by_user.get(m.id, []), business_day_count) for m in members]
    user_stats.sort(key=lambda u: (-u["total_hours"], u["user_id"]))

    return {
        "total_members": len(members),
        "active_members": active_members,
        "total_hours": round2(total_hours),
        "average_hours_per_day": (
            round2(total_hours / (active_members * business_day_count))
            if active_members and business_day_count
            else 0.0
        ),
        "attendance_rate": percentage(present, len(members) * business_day_count),
        "on_time_rate": percentage(on_time, present),
        "daily_stats": daily_stats,
        "user_stats": user_stats,
    }


def build_personal_stats(
    user: User,
    records: Iterable[AttendanceRecord],
    start: date,
    end: date,
    rules: AttendanceRules,
) -> dict:
    """One user's totals over ``[start, end]`` (the user-scoped team computation)."""
    summaries = summarize_user_days(
        (r for r in records if r.user_id == user.id), start, end, rules
    )
    business_day_count = len(rules.business_days(start, end))
    stats = _user_stats(user, list(summaries.values()), business_day_count)
    stats["total_working_days"] = business_day_count
    return stats


def today_counts(
    members: list[User],
    records: Iterable[AttendanceRecord],
    today: date,
    rules: AttendanceRules,
) -> dict:
    """Present / late / absent headcount for one day (earliest check-in per user)."""
    member_ids = {m.id for m in members}
    summaries = summarize_user_days(
        (r for r in records if r.user_id in member_ids), today, today, rules
    )
    present = len(summaries)
    late = sum(1 for s in summaries.values() if not s.on_time)
    return {
        "date": today.isoformat(),
        "present": present,
        "late": late,
        "absent": max(0, len(members) - present) if rules.is_business_day(today) else 0,
    }


# ── Exception detection ─────────────────────────────────────────────
def _exception(user: User, day: date, type_: str, key: str, details: str) -> dict:
    return {
        "id": key,
        "user_id": user.id,
        "user_name": user.full_name or "",
        "user_email": user.email,
        "department": user.department or "Unassigned",
        "date": day.isoformat(),
        "type": type_,
        "details": details,
        "status": "new",
    }


def _late_details(local_check_in: datetime, minutes_late: int) -> str:
    hours, minutes = divmod(minutes_late, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return f"Late arrival at {local_check_in:%H:%M} ({' '.join(parts)} late)"


def detect_exceptions(
    members: list[User],
    records: Iterable[AttendanceRecord],
    start: date,
    end: date,
    today: date,
    rules: AttendanceRules,
) -> list[dict]:
    """Classify the window into absent / late / forgot_checkout / pattern events."""
    by_id = {m.id: m for m in members}
    in_window = [
        r
        for r in records
        if r.user_id in by_id and start <= rules.local_date(r.check_in_time) <= end
    ]

    exceptions: list[dict] = []

    # Absent: past business days with no record at all
    present: dict[int, set[date]] = defaultdict(set)
    for rec in in_window:
        present[rec.user_id].add(rules.local_date(rec.check_in_time))
    for day in rules.business_days(start, end):
        if day >= today:
            break
        for member in members:
            if day not in present[member.id]:
                exceptions.append(
                    _exception(
                        member,
                        day,
                        "absent",
                        f"absent-{member.id}-{day.isoformat()}",
                        f"Absent without notice on {day:%A}, {day:%B} {day.day}",
                    )
                )

    # Late & forgot-checkout: one event per record
    late_counts: Counter[int] = Counter()
    for rec in sorted(in_window, key=lambda r: (ensure_utc(r.check_in_time), r.id or 0)):
        user = by_id[rec.user_id]
        local = rules.local(rec.check_in_time)
        if not rules.is_on_time(rec.check_in_time):
            late_counts[rec.user_id] += 1
            exceptions.append(
                _exception(
                    user,
                    local.date(),
                    "late",
                    f"late-{rec.id}",
                    _late_details(local, rules.minutes_late(rec.check_in_time)),
                )
            )
        if rec.auto_checkout:
            exceptions.append(
                _exception(
                    user,
                    local.date(),
                    "forgot_checkout",
                    f"forgot-{rec.id}",
                    f"Forgot to check out after checking in at {local:%H:%M}",
                )
            )

    # Pattern: repeated lateness, one per user, dated today
    for user_id, count in late_counts.items():
        if count >= rules.pattern_threshold:
            exceptions.append(
                _exception(
                    by_id[user_id],
                    today,
                    "pattern",
                    f"pattern-{user_id}-{today.isoformat()}",
                    f"Pattern of tardiness detected: Late {count} times in the selected period",
                )
            )

    exceptions.sort(key=lambda e: (e["date"], _TYPE_ORDER[e["type"]], e["user_id"], e["id"]))
    return exceptions


_RECORD_KEY_RE = re.compile(r"^(late|forgot)-(\d+)$")
_USER_DAY_KEY_RE = re.compile(r"^(absent|pattern)-(\d+)-(\d{4}-\d{2}-\d{2})$")


@dataclass(frozen=True)
class ExceptionKey:
    type: str
    # attendance id for late/forgot_checkout, user id for absent/pattern
    ref_id: int
    day: date | None = None


def parse_exception_key(key: str) -> ExceptionKey:
    """Inverse of the ids ``detect_exceptions`` assigns. Raises ``ValueError``."""
    m = _RECORD_KEY_RE.match(key)
    if m:
        type_ = "late" if m.group(1) == "late" else "forgot_checkout"
        return ExceptionKey(type=type_, ref_id=int(m.group(2)))
    m = _USER_DAY_KEY_RE.match(key)
    if m:
        return ExceptionKey(
            type=m.group(1), ref_id=int(m.group(2)), day=date.fromisoformat(m.group(3))
        )
    raise ValueError(f"Malformed exception id: {key!r}")


def count_exceptions(exceptions: Iterable[dict]) -> dict[str, int]:
    counts = {t: 0 for t in EXCEPTION_TYPES}
    for exc in exceptions:
        counts[exc["type"]] += 1
    return counts
