"""
Unit tests for the attendance aggregator: ratio/percentage semantics, the risk
threshold, recovery streaks, date windows and the derived views.
"""
from datetime import date, datetime
from fractions import Fraction
from types import SimpleNamespace
from uuid import uuid4

import pytest

from app.api.v1.attendance import aggregator
from app.api.v1.attendance.schemas import AttendanceStat


def rec(student_id, subject, day, status):
    return SimpleNamespace(id=uuid4(), student_id=student_id, subject=subject, date=day, status=status)


def test_no_records_has_no_percentage() -> None:
    stat = aggregator.summarize([])
    assert stat.total == 0
    assert stat.ratio is None
    assert stat.percentage is None
    assert stat.at_risk is False


def test_late_counts_against_ratio() -> None:
    sid = uuid4()
    records = [
        rec(sid, "Data Structures", date(2026, 2, 10), "present"),
        rec(sid, "Data Structures", date(2026, 2, 11), "late"),
    ]
    stat = aggregator.overall_stats(records, sid)
    assert (stat.present_count, stat.late_count, stat.absent_count, stat.total) == (1, 1, 0, 2)
    assert stat.ratio == 0.5
    assert stat.percentage == 50
    assert stat.at_risk is True


def test_exact_threshold_is_not_at_risk() -> None:
    stat = aggregator.stat_from_counts(present=3, absent=1, late=0)
    assert stat.percentage == 75
    assert stat.at_risk is False


def test_display_never_rounds_up_to_threshold_when_at_risk() -> None:
    """74.6% is below the threshold, so it must not be displayed as 75."""
    stat = aggregator.stat_from_counts(present=373, absent=127, late=0)
    assert stat.percentage == 74
    assert stat.at_risk is True


def test_percentage_rounds_half_up() -> None:
    assert aggregator.stat_from_counts(present=1, absent=7, late=0).percentage == 13
    assert aggregator.stat_from_counts(present=1, absent=2, late=0).percentage == 33
    assert aggregator.stat_from_counts(present=2, absent=1, late=0).percentage == 67


def test_custom_threshold() -> None:
    stat = aggregator.stat_from_counts(present=3, absent=2, late=0, threshold=50)
    assert stat.at_risk is False
    stat = aggregator.stat_from_counts(present=2, absent=3, late=0, threshold=50)
    assert stat.at_risk is True


def test_subject_stats_only_counts_that_subject() -> None:
    sid, other = uuid4(), uuid4()
    records = [
        rec(sid, "Data Structures", date(2026, 2, 10), "present"),
        rec(sid, "Algorithms", date(2026, 2, 10), "absent"),
        rec(other, "Data Structures", date(2026, 2, 10), "absent"),
    ]
    stat = aggregator.subject_stats(records, sid, "Data Structures")
    assert stat.total == 1
    assert stat.percentage == 100

    breakdown = aggregator.subject_breakdown(records, sid)
    assert [s.subject for s in breakdown] == ["Algorithms", "Data Structures"]
    assert breakdown[0].stat.at_risk is True


# ----- Recovery streak -----
def test_recovery_streak_example() -> None:
    stat = aggregator.stat_from_counts(present=1, absent=3, late=0)
    assert aggregator.required_streak_to_recover(stat) == 8


@pytest.mark.parametrize("present,total", [(p, t) for t in range(1, 13) for p in range(0, t + 1)])
def test_recovery_streak_is_minimal(present, total) -> None:
    stat = aggregator.stat_from_counts(present=present, absent=total - present, late=0)
    n = aggregator.required_streak_to_recover(stat)
    target = Fraction(3, 4)
    assert Fraction(present + n, total + n) >= target
    if n > 0:
        assert Fraction(present + n - 1, total + n - 1) < target


def test_recovery_streak_zero_when_no_records_or_met() -> None:
    assert aggregator.required_streak_to_recover(AttendanceStat()) == 0
    met = aggregator.stat_from_counts(present=4, absent=0, late=0)
    assert aggregator.required_streak_to_recover(met) == 0


@pytest.mark.parametrize("target", [0, 100, 120])
def test_recovery_streak_rejects_target_out_of_range(target) -> None:
    stat = aggregator.stat_from_counts(present=1, absent=1, late=0)
    with pytest.raises(ValueError):
        aggregator.required_streak_to_recover(stat, target)


# ----- Date windows -----
def test_period_window_is_inclusive() -> None:
    sid = uuid4()
    records = [
        rec(sid, "Data Structures", date(2026, 2, 9), "absent"),
        rec(sid, "Data Structures", date(2026, 2, 10), "present"),
        rec(sid, "Data Structures", date(2026, 2, 12), "present"),
        rec(sid, "Data Structures", date(2026, 2, 13), "absent"),
    ]
    stat = aggregator.period_stats(records, date(2026, 2, 10), date(2026, 2, 12), student_id=sid)
    assert stat.total == 2
    assert stat.percentage == 100


def test_period_window_uses_calendar_date_of_datetimes() -> None:
    sid = uuid4()
    records = [rec(sid, "Data Structures", datetime(2026, 2, 12, 23, 59), "late")]
    stat = aggregator.period_stats(records, date(2026, 2, 12), date(2026, 2, 12))
    assert stat.late_count == 1


def test_period_window_rejects_reversed_bounds() -> None:
    with pytest.raises(ValueError):
        aggregator.period_stats([], date(2026, 2, 12), date(2026, 2, 10))


# ----- Series and calendar -----
def test_daily_breakdown_oldest_first() -> None:
    sid = uuid4()
    records = [
        rec(sid, "Data Structures", date(2026, 2, 10), "present"),
        rec(sid, "Data Structures", date(2026, 2, 11), "absent"),
    ]
    series = aggregator.daily_breakdown(records, date(2026, 2, 11), days=3)
    assert [p.start for p in series] == [date(2026, 2, 9), date(2026, 2, 10), date(2026, 2, 11)]
    assert series[1].label == "Tue 10"
    assert series[0].stat.percentage is None
    assert series[1].stat.percentage == 100
    assert series[2].stat.at_risk is True


def test_weekly_breakdown_starts_on_monday() -> None:
    series = aggregator.weekly_breakdown([], date(2026, 2, 11), weeks=2)
    assert [(p.start, p.end) for p in series] == [
        (date(2026, 2, 2), date(2026, 2, 8)),
        (date(2026, 2, 9), date(2026, 2, 15)),
    ]


def test_monthly_breakdown_crosses_year_boundary() -> None:
    sid = uuid4()
    records = [
        rec(sid, "Data Structures", date(2025, 12, 31), "absent"),
        rec(sid, "Data Structures", date(2026, 1, 1), "present"),
    ]
    series = aggregator.monthly_breakdown(records, date(2026, 2, 15), months=3)
    assert [p.label for p in series] == ["Dec 2025", "Jan 2026", "Feb 2026"]
    assert series[0].end == date(2025, 12, 31)
    assert series[0].stat.absent_count == 1
    assert series[1].stat.present_count == 1
    assert series[2].stat.total == 0


def test_calendar_shows_worst_status_of_day() -> None:
    sid = uuid4()
    records = [
        rec(sid, "Data Structures", date(2026, 2, 10), "present"),
        rec(sid, "Algorithms", date(2026, 2, 10), "absent"),
        rec(sid, "Data Structures", date(2026, 2, 11), "late"),
        rec(sid, "Data Structures", date(2026, 3, 1), "absent"),
    ]
    days = aggregator.calendar_map(records, 2026, 2)
    assert days == {date(2026, 2, 10): "absent", date(2026, 2, 11): "late"}


# ----- Roster -----
def test_roster_defaults_unmarked_students_to_present() -> None:
    ravi = SimpleNamespace(id=uuid4(), full_name="Ravi Student", email="ravi@uni.test")
    sam = SimpleNamespace(id=uuid4(), full_name="Sam Student", email="sam@uni.test")
    marked = rec(sam.id, "Data Structures", date(2026, 2, 10), "absent")
    records = [
        marked,
        rec(ravi.id, "Data Structures", date(2026, 2, 9), "absent"),
        rec(ravi.id, "Algorithms", date(2026, 2, 10), "absent"),
    ]
    rows = aggregator.session_roster([sam, ravi], records, "Data Structures", date(2026, 2, 10))
    assert [r.student_name for r in rows] == ["Ravi Student", "Sam Student"]
    assert rows[0].status.value == "present"
    assert rows[0].attendance_id is None
    assert rows[1].status.value == "absent"
    assert rows[1].attendance_id == marked.id

    summary = aggregator.roster_summary(rows)
    assert (summary.present_count, summary.absent_count, summary.percentage) == (1, 1, 50)


def test_subject_overview_flags_students_at_risk() -> None:
    ravi = SimpleNamespace(id=uuid4(), full_name="Ravi Student")
    sam = SimpleNamespace(id=uuid4(), full_name="Sam Student")
    records = [
        rec(ravi.id, "Data Structures", date(2026, 2, 10), "present"),
        rec(sam.id, "Data Structures", date(2026, 2, 10), "absent"),
        rec(ravi.id, "Algorithms", date(2026, 2, 10), "absent"),
    ]
    overview = aggregator.subject_overview([sam, ravi], records, "Data Structures")
    assert [(row.student_name, row.stat.at_risk) for row in overview] == [
        ("Ravi Student", False),
        ("Sam Student", True),
    ]


def test_display_rounds_normally_away_from_threshold() -> None:
    # 75.4% rounds down to the threshold and is not at risk
    stat = aggregator.stat_from_counts(present=377, absent=123, late=0)
    assert (stat.percentage, stat.at_risk) == (75, False)
    # 74.4% is at risk and rounds to 74 anyway
    stat = aggregator.stat_from_counts(present=372, absent=128, late=0)
    assert (stat.percentage, stat.at_risk) == (74, True)
