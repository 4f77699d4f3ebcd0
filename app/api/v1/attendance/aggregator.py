"""
Attendance statistics computed from a flat list of attendance records.

Everything here is pure: callers load the records (ORM rows or anything with
``student_id``, ``subject``, ``date`` and ``status`` attributes) and pass them
in. Dates are compared as calendar dates; a ``datetime`` is reduced to its own
date without any timezone conversion.
"""

import math
from calendar import monthrange
from collections import defaultdict
from datetime import date, datetime, timedelta
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from app.core.enums import AttendanceStatus

from .schemas import AttendanceStat, PeriodAttendanceStat, RosterRow, SubjectAttendanceStat, SubjectStudentStat

DEFAULT_RISK_THRESHOLD = 75

# Worst status wins when a day has several records (calendar view)
_STATUS_SEVERITY = {
    AttendanceStatus.PRESENT.value: 0,
    AttendanceStatus.LATE.value: 1,
    AttendanceStatus.ABSENT.value: 2,
}


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _round_half_up(value: Fraction) -> int:
    return math.floor(value + Fraction(1, 2))


def stat_from_counts(present: int, absent: int, late: int, threshold: int = DEFAULT_RISK_THRESHOLD) -> AttendanceStat:
    total = present + absent + late
    if total == 0:
        return AttendanceStat()
    exact = Fraction(present, total)
    at_risk = exact < Fraction(threshold, 100)
    percentage = _round_half_up(exact * 100)
    if at_risk:
        # Just under the threshold must not round up to it
        percentage = min(percentage, threshold - 1)
    return AttendanceStat(
        present_count=present,
        absent_count=absent,
        late_count=late,
        total=total,
        ratio=float(exact),
        percentage=percentage,
        at_risk=at_risk,
    )


def summarize(records: Iterable, threshold: int = DEFAULT_RISK_THRESHOLD) -> AttendanceStat:
    counts = {s.value: 0 for s in AttendanceStatus}
    for rec in records:
        status = _status_value(rec.status)
        if status in counts:
            counts[status] += 1
    return stat_from_counts(
        counts[AttendanceStatus.PRESENT.value],
        counts[AttendanceStatus.ABSENT.value],
        counts[AttendanceStatus.LATE.value],
        threshold,
    )


def _select(records: Iterable, student_id: Optional[UUID] = None, subject: Optional[str] = None) -> List:
    return [
        r for r in records
        if (student_id is None or r.student_id == student_id)
        and (subject is None or r.subject == subject)
    ]


def _in_window(records: Iterable, start: date, end: date) -> List:
    return [r for r in records if start <= _as_date(r.date) <= end]


# ----- Scoped stats -----
def overall_stats(records: Iterable, student_id: UUID, threshold: int = DEFAULT_RISK_THRESHOLD) -> AttendanceStat:
    """Across every subject of one student."""
    return summarize(_select(records, student_id=student_id), threshold)


def subject_stats(
    records: Iterable,
    student_id: UUID,
    subject: str,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> AttendanceStat:
    """One student in one subject. ``at_risk`` is the per-subject critical flag."""
    return summarize(_select(records, student_id=student_id, subject=subject), threshold)


def period_stats(
    records: Iterable,
    window_start: date,
    window_end: date,
    *,
    student_id: Optional[UUID] = None,
    subject: Optional[str] = None,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> AttendanceStat:
    """Records dated within [window_start, window_end], both ends inclusive."""
    if window_start > window_end:
        raise ValueError("window_start must be on or before window_end")
    scoped = _select(records, student_id=student_id, subject=subject)
    return summarize(_in_window(scoped, window_start, window_end), threshold)


def subject_breakdown(
    records: Iterable,
    student_id: UUID,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> List[SubjectAttendanceStat]:
    """One stat per subject the student has records in, ordered by subject name."""
    by_subject: Dict[str, List] = defaultdict(list)
    for rec in _select(records, student_id=student_id):
        by_subject[rec.subject].append(rec)
    return [
        SubjectAttendanceStat(subject=name, stat=summarize(recs, threshold))
        for name, recs in sorted(by_subject.items())
    ]


# ----- Time series -----
def daily_breakdown(
    records: Iterable,
    end_date: date,
    days: int = 7,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> List[PeriodAttendanceStat]:
    """One bucket per day, oldest first, ending on ``end_date``."""
    records = list(records)
    series = []
    for offset in range(days - 1, -1, -1):
        day = end_date - timedelta(days=offset)
        series.append(PeriodAttendanceStat(
            label=f"{day:%a} {day.day}",
            start=day,
            end=day,
            stat=summarize(_in_window(records, day, day), threshold),
        ))
    return series


def weekly_breakdown(
    records: Iterable,
    end_date: date,
    weeks: int = 4,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> List[PeriodAttendanceStat]:
    """Monday-to-Sunday weeks, oldest first; the last one contains ``end_date``."""
    records = list(records)
    current_monday = end_date - timedelta(days=end_date.weekday())
    series = []
    for offset in range(weeks - 1, -1, -1):
        start = current_monday - timedelta(weeks=offset)
        end = start + timedelta(days=6)
        series.append(PeriodAttendanceStat(
            label=f"Week of {start.isoformat()}",
            start=start,
            end=end,
            stat=summarize(_in_window(records, start, end), threshold),
        ))
    return series


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def monthly_breakdown(
    records: Iterable,
    end_date: date,
    months: int = 6,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> List[PeriodAttendanceStat]:
    """Whole calendar months, oldest first; the last one is the month of ``end_date``."""
    records = list(records)
    series = []
    for offset in range(months - 1, -1, -1):
        year, month = _shift_month(end_date.year, end_date.month, -offset)
        start = date(year, month, 1)
        end = date(year, month, monthrange(year, month)[1])
        series.append(PeriodAttendanceStat(
            label=f"{start:%b} {year}",
            start=start,
            end=end,
            stat=summarize(_in_window(records, start, end), threshold),
        ))
    return series


def calendar_map(records: Iterable, year: int, month: int) -> Dict[date, str]:
    """Date -> status for one month. On days with several subjects the worst status is shown."""
    start = date(year, month, 1)
    end = date(year, month, monthrange(year, month)[1])
    days: Dict[date, str] = {}
    for rec in _in_window(records, start, end):
        day = _as_date(rec.date)
        status = _status_value(rec.status)
        if day not in days or _STATUS_SEVERITY.get(status, 0) > _STATUS_SEVERITY.get(days[day], 0):
            days[day] = status
    return dict(sorted(days.items()))


# ----- Marking grid -----
def session_roster(
    students: Sequence,
    records: Iterable,
    subject: str,
    on_date: date,
) -> List[RosterRow]:
    """
    One row per enrolled student for ``subject`` on ``on_date``. Students with no
    record for that day default to present.
    """
    marked = {
        r.student_id: r
        for r in records
        if r.subject == subject and _as_date(r.date) == on_date
    }
    rows = []
    for student in sorted(students, key=lambda s: (s.full_name.lower(), str(s.id))):
        rec = marked.get(student.id)
        rows.append(RosterRow(
            student_id=student.id,
            student_name=student.full_name,
            email=getattr(student, "email", None),
            status=_status_value(rec.status) if rec else AttendanceStatus.PRESENT.value,
            attendance_id=rec.id if rec else None,
        ))
    return rows


def roster_summary(rows: Iterable[RosterRow], threshold: int = DEFAULT_RISK_THRESHOLD) -> AttendanceStat:
    return summarize(rows, threshold)


def subject_overview(
    students: Sequence,
    records: Iterable,
    subject: str,
    threshold: int = DEFAULT_RISK_THRESHOLD,
) -> List[SubjectStudentStat]:
    records = _select(records, subject=subject)
    return [
        SubjectStudentStat(
            student_id=s.id,
            student_name=s.full_name,
            stat=subject_stats(records, s.id, subject, threshold),
        )
        for s in sorted(students, key=lambda s: (s.full_name.lower(), str(s.id)))
    ]


# ----- Recovery -----
def required_streak_to_recover(stat: AttendanceStat, target_percentage: int = DEFAULT_RISK_THRESHOLD) -> int:
    """
    Minimum number of further consecutive present sessions that lifts the ratio to
    ``target_percentage``: ceil((target * total - present) / (1 - target)).
    Zero when there are no records or the target is already met.
    """
    if not 0 < target_percentage < 100:
        raise ValueError("target_percentage must be between 0 and 100 (exclusive)")
    if stat.total == 0:
        return 0
    target = Fraction(target_percentage, 100)
    if Fraction(stat.present_count, stat.total) >= target:
        return 0
    return math.ceil((target * stat.total - stat.present_count) / (1 - target))
