"""Unit tests for attendance aggregation & exception detection (no database)."""

from datetime import date, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from crewdesk.core.config import Settings
from crewdesk.models.attendance import AttendanceRecord
from crewdesk.models.user import User
from crewdesk.services.attendance_analytics import (AttendanceRules,
                                                    auto_checkout_time,
                                                    build_personal_stats,
                                                    build_team_analytics,
                                                    compute_total_hours,
                                                    count_exceptions,
                                                    detect_exceptions,
                                                    parse_exception_key,
                                                    period_window, round2,
                                                    summarize_user_days,
                                                    today_counts)

RULES = AttendanceRules()
UTC = timezone.utc

# 2024-01-01 is a Monday
MON, TUE, WED, THU, FRI, SAT, SUN = (date(2024, 1, d) for d in range(1, 8))
LATER = date(2024, 1, 10)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def _user(user_id: int = 1, name: str = "Ada Lovelace") -> User:
    return User(
        id=user_id,
        email=f"user{user_id}@example.com",
        full_name=name,
        department="Engineering",
        role="user",
        is_active=True,
    )


def _rec(rec_id, user_id, check_in, check_out=None, auto=False) -> AttendanceRecord:
    rec = AttendanceRecord(
        id=rec_id,
        user_id=user_id,
        check_in_time=check_in,
        check_out_time=check_out,
        auto_checkout=auto,
    )
    rec.total_hours = compute_total_hours(check_in, check_out, RULES) if check_out else None
    return rec


# ── Rounding & hours ────────────────────────────────────────────────
def test_round2_is_half_up():
    assert round2(0.125) == 0.13
    assert round2(2.675) == 2.68
    assert round2(1.004) == 1.0


def test_total_hours_exact():
    assert compute_total_hours(_at(TUE, 9), _at(TUE, 17), RULES) == 8.0


def test_total_hours_capped_per_record():
    assert compute_total_hours(_at(TUE, 6), _at(TUE, 22, 30), RULES) == 12.0


def test_total_hours_never_negative():
    assert compute_total_hours(_at(TUE, 17), _at(TUE, 9), RULES) == 0.0


def test_total_hours_accepts_naive_timestamps_as_utc():
    naive_in = datetime(2024, 1, 2, 9, 0)
    assert compute_total_hours(naive_in, _at(TUE, 10, 30), RULES) == 1.5


# ── On-time predicate ───────────────────────────────────────────────
@pytest.mark.parametrize(
    "hour, minute, expected",
    [(8, 59, True), (9, 0, True), (9, 15, True), (9, 16, False), (10, 0, False)],
)
def test_on_time_boundary(hour, minute, expected):
    assert RULES.is_on_time(_at(TUE, hour, minute)) is expected


def test_on_time_ignores_seconds():
    assert RULES.is_on_time(datetime(2024, 1, 2, 9, 15, 59, tzinfo=UTC)) is True


def test_utc_offset_shifts_clock_and_date():
    rules = AttendanceRules(tz=timezone(timedelta(hours=5)))
    check_in = datetime(2024, 1, 1, 23, 10, tzinfo=UTC)  # 04:10 on Tuesday locally
    assert rules.local_date(check_in) == TUE
    assert rules.is_on_time(datetime(2024, 1, 2, 4, 10, tzinfo=UTC)) is True
    assert rules.is_on_time(datetime(2024, 1, 2, 4, 20, tzinfo=UTC)) is False


def test_rules_from_settings():
    s = Settings(
        WORK_START_HOUR=8,
        LATE_THRESHOLD_MINUTES=5,
        WEEKEND_DAYS="4,5",
        TIMEZONE_OFFSET="-03:30",
    )
    rules = AttendanceRules.from_settings(s)
    assert rules.work_start_hour == 8
    assert rules.late_threshold_minutes == 5
    assert rules.weekend_days == frozenset({4, 5})
    assert rules.tz.utcoffset(None) == -timedelta(hours=3, minutes=30)


@pytest.mark.parametrize("offset", ["Z", "05:00", "+5:00", "+24:00", "+05:60", ""])
def test_settings_reject_malformed_utc_offset(offset):
    with pytest.raises(ValidationError):
        Settings(TIMEZONE_OFFSET=offset)


@pytest.mark.parametrize("offset", ["+05:30", "-03:00", "+02", "+00:00"])
def test_settings_accept_signed_utc_offset(offset):
    assert Settings(TIMEZONE_OFFSET=offset).TIMEZONE_OFFSET == offset


# ── Aggregation ─────────────────────────────────────────────────────
def test_day_hours_capped_after_summing():
    records = [
        _rec(1, 1, _at(TUE, 6), _at(TUE, 13)),  # 7h
        _rec(2, 1, _at(TUE, 14), _at(TUE, 20)),  # 6h
    ]
    summaries = summarize_user_days(records, MON, SUN, RULES)
    assert summaries[(1, TUE)].hours == 12.0


def test_open_session_counts_presence_without_hours():
    summaries = summarize_user_days([_rec(1, 1, _at(TUE, 9))], MON, SUN, RULES)
    assert summaries[(1, TUE)].hours is None

    analytics = build_team_analytics([_user()], [_rec(1, 1, _at(TUE, 9))], MON, SUN, RULES)
    assert analytics["total_hours"] == 0.0
    assert analytics["user_stats"][0]["attendance_days"] == 1


def test_on_time_uses_earliest_check_in_only():
    records = [
        _rec(2, 1, _at(TUE, 13), _at(TUE, 17)),  # late on its own
        _rec(1, 1, _at(TUE, 8, 55), _at(TUE, 12)),
    ]
    analytics = build_team_analytics([_user()], records, TUE, TUE, RULES)
    assert analytics["on_time_rate"] == 100.0
    assert analytics["user_stats"][0]["on_time_count"] == 1

    # the exception listing still flags the late record itself
    exceptions = detect_exceptions([_user()], records, TUE, TUE, LATER, RULES)
    assert [e["id"] for e in exceptions if e["type"] == "late"] == ["late-2"]


def test_team_rates():
    users = [_user(1), _user(2, "Grace Hopper")]
    records = [
        _rec(1, 1, _at(MON, 9), _at(MON, 17)),
        _rec(2, 1, _at(TUE, 9, 30), _at(TUE, 17)),
        _rec(3, 2, _at(MON, 8), _at(MON, 12)),
    ]
    analytics = build_team_analytics(users, records, MON, SUN, RULES)

    assert analytics["total_members"] == 2
    assert analytics["active_members"] == 2
    assert analytics["total_hours"] == 19.5
    # 3 present user-days out of 2 users x 5 business days
    assert analytics["attendance_rate"] == 30.0
    assert analytics["on_time_rate"] == round2(2 / 3 * 100)
    assert analytics["average_hours_per_day"] == round2(19.5 / 10)

    assert [u["user_id"] for u in analytics["user_stats"]] == [1, 2]
    assert analytics["user_stats"][0]["total_hours"] == 15.5
    assert analytics["user_stats"][1]["attendance_rate"] == 20.0


def test_daily_stats_cover_every_day():
    records = [_rec(1, 1, _at(MON, 9), _at(MON, 17))]
    analytics = build_team_analytics([_user()], records, MON, SUN, RULES)
    daily = analytics["daily_stats"]

    assert [d["date"] for d in daily] == [d.isoformat() for d in (MON, TUE, WED, THU, FRI, SAT, SUN)]
    assert daily[0] == {
        "date": "2024-01-01",
        "total_hours": 8.0,
        "attendance_count": 1,
        "on_time_count": 1,
        "is_business_day": True,
    }
    assert daily[5]["is_business_day"] is False


def test_empty_user_set_gives_empty_analytics():
    analytics = build_team_analytics([], [_rec(1, 1, _at(MON, 9))], MON, SUN, RULES)
    assert analytics["total_members"] == 0
    assert analytics["daily_stats"] == []
    assert analytics["user_stats"] == []
    assert detect_exceptions([], [], MON, SUN, LATER, RULES) == []


def test_personal_stats():
    records = [
        _rec(1, 1, _at(MON, 9), _at(MON, 17)),
        _rec(2, 1, _at(WED, 10), _at(WED, 14)),
    ]
    stats = build_personal_stats(_user(), records, MON, SUN, RULES)
    assert stats["total_hours"] == 12.0
    assert stats["attendance_days"] == 2
    assert stats["total_working_days"] == 5
    assert stats["attendance_rate"] == 40.0
    assert stats["on_time_rate"] == 50.0
    assert stats["average_hours_per_day"] == 6.0


def test_today_counts():
    users = [_user(1), _user(2), _user(3)]
    records = [
        _rec(1, 1, _at(TUE, 9)),
        _rec(2, 2, _at(TUE, 9, 40)),
        _rec(3, 2, _at(TUE, 8)),  # earliest wins, so not late
    ]
    assert today_counts(users, records, TUE, RULES) == {
        "date": "2024-01-02",
        "present": 2,
        "late": 0,
        "absent": 1,
    }
    assert today_counts(users, [], SAT, RULES)["absent"] == 0


# ── Exceptions ──────────────────────────────────────────────────────
def test_end_to_end_week():
    """One late 8h day in the first week of 2024, nothing else."""
    user = _user()
    records = [_rec(7, 1, _at(TUE, 9, 20), _at(TUE, 17, 20))]

    analytics = build_team_analytics([user], records, MON, SUN, RULES)
    assert analytics["user_stats"][0]["total_hours"] == 8.0

    exceptions = detect_exceptions([user], records, MON, SUN, LATER, RULES)
    late = [e for e in exceptions if e["type"] == "late"]
    absent_dates = [e["date"] for e in exceptions if e["type"] == "absent"]

    assert len(late) == 1
    assert late[0]["date"] == "2024-01-02"
    assert late[0]["details"] == "Late arrival at 09:20 (20m late)"
    assert "2024-01-02" not in absent_dates
    assert absent_dates == ["2024-01-01", "2024-01-03", "2024-01-04", "2024-01-05"]


def test_no_absences_for_today_or_later():
    exceptions = detect_exceptions([_user()], [], MON, SUN, WED, RULES)
    assert [e["date"] for e in exceptions] == ["2024-01-01", "2024-01-02"]


def test_absent_exception_shape():
    exc = detect_exceptions([_user(5)], [], MON, MON, LATER, RULES)[0]
    assert exc == {
        "id": "absent-5-2024-01-01",
        "user_id": 5,
        "user_name": "Ada Lovelace",
        "user_email": "user5@example.com",
        "department": "Engineering",
        "date": "2024-01-01",
        "type": "absent",
        "details": "Absent without notice on Monday, January 1",
        "status": "new",
    }


def test_missing_department_reported_as_unassigned():
    user = _user()
    user.department = None
    exc = detect_exceptions([user], [], MON, MON, LATER, RULES)[0]
    assert exc["department"] == "Unassigned"


def test_late_details_with_hours():
    records = [_rec(1, 1, _at(TUE, 10, 30), _at(TUE, 17))]
    late = [e for e in detect_exceptions([_user()], records, TUE, TUE, LATER, RULES) if e["type"] == "late"]
    assert late[0]["details"] == "Late arrival at 10:30 (1h 30m late)"


def test_forgot_checkout():
    check_in = _at(MON, 8, 30)
    records = [_rec(4, 1, check_in, auto_checkout_time(check_in, RULES), auto=True)]
    exceptions = detect_exceptions([_user()], records, MON, MON, LATER, RULES)
    assert [(e["type"], e["id"]) for e in exceptions] == [("forgot_checkout", "forgot-4")]


def test_three_late_days_make_one_pattern():
    records = [
        _rec(1, 1, _at(MON, 9, 30), _at(MON, 17)),
        _rec(2, 1, _at(TUE, 9, 30), _at(TUE, 17)),
        _rec(3, 1, _at(WED, 9, 30), _at(WED, 17)),
    ]
    exceptions = detect_exceptions([_user()], records, MON, SUN, LATER, RULES)
    patterns = [e for e in exceptions if e["type"] == "pattern"]
    assert len(patterns) == 1
    assert patterns[0]["id"] == "pattern-1-2024-01-10"
    assert patterns[0]["date"] == LATER.isoformat()
    assert patterns[0]["details"] == "Pattern of tardiness detected: Late 3 times in the selected period"


def test_two_late_days_make_no_pattern():
    records = [
        _rec(1, 1, _at(MON, 9, 30), _at(MON, 17)),
        _rec(2, 1, _at(TUE, 9, 30), _at(TUE, 17)),
    ]
    exceptions = detect_exceptions([_user()], records, MON, SUN, LATER, RULES)
    assert not [e for e in exceptions if e["type"] == "pattern"]


def test_counts_cover_all_types():
    records = [_rec(1, 1, _at(TUE, 9, 30), _at(TUE, 17))]
    counts = count_exceptions(detect_exceptions([_user()], records, MON, SUN, LATER, RULES))
    assert counts == {"absent": 4, "late": 1, "forgot_checkout": 0, "pattern": 0}


def test_exceptions_sorted_by_date_then_type():
    records = [_rec(1, 1, _at(MON, 9, 30), _at(MON, 17))]
    users = [_user(1), _user(2)]
    exceptions = detect_exceptions(users, records, MON, MON, LATER, RULES)
    assert [e["id"] for e in exceptions] == ["absent-2-2024-01-01", "late-1"]


# ── Auto-checkout ───────────────────────────────────────────────────
def test_auto_checkout_uses_default_hours():
    assert auto_checkout_time(_at(MON, 9), RULES) == _at(MON, 17)


def test_auto_checkout_stops_at_end_of_day():
    assert auto_checkout_time(_at(MON, 20), RULES) == datetime(2024, 1, 1, 23, 59, 59, tzinfo=UTC)


# ── Keys & periods ──────────────────────────────────────────────────
def test_parse_exception_keys():
    assert parse_exception_key("late-12").type == "late"
    assert parse_exception_key("forgot-3").type == "forgot_checkout"
    key = parse_exception_key("absent-4-2024-01-02")
    assert (key.type, key.ref_id, key.day) == ("absent", 4, TUE)
    assert parse_exception_key("pattern-9-2024-01-10").day == LATER


@pytest.mark.parametrize("bad", ["late-", "late-x", "absent-1", "absent-1-2024-02-30", "other-1", ""])
def test_parse_exception_key_rejects_garbage(bad):
    with pytest.raises(ValueError):
        parse_exception_key(bad)


def test_period_windows():
    today = date(2024, 5, 15)  # Wednesday
    assert period_window("day", today) == (today, today)
    assert period_window("week", today) == (date(2024, 5, 13), today)
    assert period_window("month", today) == (date(2024, 5, 1), today)
    assert period_window("year", today) == (date(2024, 1, 1), today)
    with pytest.raises(ValueError):
        period_window("decade", today)
