from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import AttendanceStatus


# ----- Derived statistics -----
class AttendanceStat(BaseModel):
    """
    Presence counts for one scope (student, student+subject, or a time window).

    ``ratio`` is the exact present/total fraction and ``at_risk`` is decided on it.
    ``percentage`` is the rounded display value, kept below the threshold when at
    risk so the two never disagree. Without records both are null and
    ``at_risk`` is False.
    """

    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    total: int = 0
    ratio: Optional[float] = None
    percentage: Optional[int] = None
    at_risk: bool = False


class SubjectAttendanceStat(BaseModel):
    subject: str
    stat: AttendanceStat


class PeriodAttendanceStat(BaseModel):
    """One bucket of a day/week/month series. Bounds are inclusive calendar dates."""

    label: str
    start: date
    end: date
    stat: AttendanceStat


class PeriodStatsResponse(BaseModel):
    start: date
    end: date
    student_id: Optional[UUID] = None
    subject: Optional[str] = None
    stat: AttendanceStat


class CalendarDay(BaseModel):
    date: date
    status: AttendanceStatus


class StudentAttendanceSummary(BaseModel):
    """Everything the student dashboard and attendance page render."""

    student_id: UUID
    overall: AttendanceStat
    sessions_needed: int = Field(..., description="Consecutive present sessions needed to reach the threshold")
    subjects: List[SubjectAttendanceStat]
    last_7_days: List[PeriodAttendanceStat]
    monthly: List[PeriodAttendanceStat]


class SubjectStudentStat(BaseModel):
    student_id: UUID
    student_name: str
    stat: AttendanceStat


class SubjectOverviewResponse(BaseModel):
    """Per enrolled student attendance in one subject, for the faculty view."""

    subject_id: UUID
    subject: str
    students: List[SubjectStudentStat]
    at_risk_student_ids: List[UUID]
    last_7_days: List[PeriodAttendanceStat]


# ----- Marking -----
class RosterRow(BaseModel):
    """One enrolled student in the mark-attendance grid."""

    student_id: UUID
    student_name: str
    email: Optional[str] = None
    status: AttendanceStatus
    attendance_id: Optional[UUID] = None  # set when already marked for the date


class SessionRosterResponse(BaseModel):
    subject_id: UUID
    subject: str
    date: date
    rows: List[RosterRow]
    summary: AttendanceStat


class AttendanceMark(BaseModel):
    """Attendance for a single student."""

    student_id: UUID
    status: AttendanceStatus


class AttendanceMarkRequest(BaseModel):
    """Save the grid for one subject and date. Existing rows for the day are updated."""

    subject_id: UUID
    date: date
    records: List[AttendanceMark] = Field(..., min_length=1)


class AttendanceRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    faculty_id: Optional[UUID] = None
    subject: str
    date: date
    status: AttendanceStatus
    created_at: datetime

    class Config:
        from_attributes = True


class AttendanceMarkResponse(BaseModel):
    created: int
    updated: int
    records: List[AttendanceRecordResponse]
