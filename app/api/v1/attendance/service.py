"""Attendance marking and statistics with role-based permission checks."""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.config import settings
from app.core.enums import UserRole
from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.models import AttendanceRecord, Enrollment, Subject
from app.api.v1.subjects import service as subject_service

from . import aggregator
from .schemas import (
    AttendanceMarkRequest,
    AttendanceMarkResponse,
    AttendanceRecordResponse,
    CalendarDay,
    PeriodAttendanceStat,
    PeriodStatsResponse,
    SessionRosterResponse,
    StudentAttendanceSummary,
    SubjectAttendanceStat,
    SubjectOverviewResponse,
)

logger = logging.getLogger(__name__)

SERIES_GRANULARITIES = ("day", "week", "month")


# ----- Permission helpers -----
def _is_admin(user_role: str) -> bool:
    return user_role == UserRole.ADMIN.value


async def _faculty_teaches_student(db: AsyncSession, faculty_id: UUID, student_id: UUID) -> bool:
    """True if the student is enrolled in any subject the faculty member teaches."""
    result = await db.execute(
        select(Enrollment.id)
        .join(Subject, Subject.id == Enrollment.subject_id)
        .where(Subject.faculty_id == faculty_id, Enrollment.student_id == student_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def ensure_can_view_student(db: AsyncSession, user_id: UUID, user_role: str, student_id: UUID) -> User:
    """Admin: any student. Faculty: students in their subjects. Student: self only."""
    student = await db.get(User, student_id)
    if not student or student.role != UserRole.STUDENT.value:
        raise NotFoundError(f"Student {student_id} not found")
    if _is_admin(user_role):
        return student
    if user_role == UserRole.FACULTY.value:
        if not await _faculty_teaches_student(db, user_id, student_id):
            raise PermissionDeniedError("Cannot view attendance of students outside your subjects")
        return student
    if user_id != student_id:
        raise PermissionDeniedError("Cannot view other students' attendance")
    return student


async def _load_records(
    db: AsyncSession,
    *,
    student_id: Optional[UUID] = None,
    subjects: Optional[List[str]] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[AttendanceRecord]:
    stmt = select(AttendanceRecord)
    if student_id:
        stmt = stmt.where(AttendanceRecord.student_id == student_id)
    if subjects is not None:
        stmt = stmt.where(AttendanceRecord.subject.in_(subjects))
    if date_from:
        stmt = stmt.where(AttendanceRecord.date >= date_from)
    if date_to:
        stmt = stmt.where(AttendanceRecord.date <= date_to)
    result = await db.execute(stmt.order_by(AttendanceRecord.date.desc(), AttendanceRecord.subject))
    return list(result.scalars().all())


# ----- Records -----
async def list_attendance(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    *,
    student_id: Optional[UUID] = None,
    subject: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> List[AttendanceRecordResponse]:
    """Newest first. Students see their own rows, faculty the rows of subjects they teach."""
    subjects = [subject] if subject else None
    if user_role == UserRole.STUDENT.value:
        student_id = user_id
    elif user_role == UserRole.FACULTY.value:
        taught = [s.name for s in await subject_service.list_subjects(db, faculty_id=user_id)]
        subjects = [s for s in (subjects or taught) if s in taught]
    elif not _is_admin(user_role):
        raise PermissionDeniedError("Insufficient permissions to view attendance")
    records = await _load_records(
        db, student_id=student_id, subjects=subjects, date_from=date_from, date_to=date_to,
    )
    return [AttendanceRecordResponse.model_validate(r) for r in records]


async def mark_attendance(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    payload: AttendanceMarkRequest,
) -> AttendanceMarkResponse:
    """
    Upsert one subject's attendance for a day, keyed by (student, subject, date).
    Every student must be enrolled in the subject; the batch is saved all or nothing.
    """
    if payload.date > date.today():
        raise ValidationError("Cannot mark attendance for future dates")
    subject = await subject_service.get_subject(db, payload.subject_id)
    subject_service.ensure_can_manage_subject(subject, user_id, user_role)

    student_ids = [rec.student_id for rec in payload.records]
    if len(set(student_ids)) != len(student_ids):
        raise ValidationError("Each student may appear only once per save")

    # Share lock until commit: an unenroll in progress either finishes first or waits for this save
    enrolled = set((await db.execute(
        select(Enrollment.student_id).where(
            Enrollment.subject_id == subject.id,
            Enrollment.student_id.in_(student_ids),
        )
        .with_for_update(read=True)
    )).scalars().all())
    not_enrolled = [str(sid) for sid in student_ids if sid not in enrolled]
    if not_enrolled:
        raise ValidationError(f"Students not enrolled in {subject.name}: {', '.join(not_enrolled)}")

    existing = {
        rec.student_id: rec
        for rec in (await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.subject == subject.name,
                AttendanceRecord.date == payload.date,
                AttendanceRecord.student_id.in_(student_ids),
            )
        )).scalars().all()
    }
    saved = []
    created = 0
    for mark in payload.records:
        rec = existing.get(mark.student_id)
        if rec:
            rec.status = mark.status.value
            rec.faculty_id = user_id
        else:
            rec = AttendanceRecord(
                student_id=mark.student_id,
                faculty_id=user_id,
                subject=subject.name,
                date=payload.date,
                status=mark.status.value,
            )
            db.add(rec)
            created += 1
        saved.append(rec)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Attendance for this session was saved concurrently; reload and try again")
    logger.info(
        "Attendance saved for %s on %s by %s: %d created, %d updated",
        subject.name, payload.date, user_id, created, len(saved) - created,
    )
    return AttendanceMarkResponse(
        created=created,
        updated=len(saved) - created,
        records=[AttendanceRecordResponse.model_validate(r) for r in saved],
    )


async def get_session_roster(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    subject_id: UUID,
    on_date: date,
) -> SessionRosterResponse:
    """Mark-attendance grid: every enrolled student with the status already saved for the day."""
    subject = await subject_service.get_subject(db, subject_id)
    subject_service.ensure_can_manage_subject(subject, user_id, user_role)
    students = await subject_service.get_students_enrolled_in_subject(db, subject_id)
    records = await _load_records(db, subjects=[subject.name], date_from=on_date, date_to=on_date)
    rows = aggregator.session_roster(students, records, subject.name, on_date)
    return SessionRosterResponse(
        subject_id=subject.id,
        subject=subject.name,
        date=on_date,
        rows=rows,
        summary=aggregator.roster_summary(rows, settings.attendance_risk_threshold),
    )


# ----- Statistics -----
async def get_student_summary(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    student_id: UUID,
    today: Optional[date] = None,
) -> StudentAttendanceSummary:
    await ensure_can_view_student(db, user_id, user_role, student_id)
    today = today or date.today()
    threshold = settings.attendance_risk_threshold
    records = await _load_records(db, student_id=student_id)
    overall = aggregator.overall_stats(records, student_id, threshold)
    return StudentAttendanceSummary(
        student_id=student_id,
        overall=overall,
        sessions_needed=aggregator.required_streak_to_recover(overall, threshold),
        subjects=aggregator.subject_breakdown(records, student_id, threshold),
        last_7_days=aggregator.daily_breakdown(records, today, 7, threshold),
        monthly=aggregator.monthly_breakdown(records, today, 6, threshold),
    )


async def get_student_subject_stats(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    student_id: UUID,
    subject_id: UUID,
) -> SubjectAttendanceStat:
    await ensure_can_view_student(db, user_id, user_role, student_id)
    subject = await subject_service.get_subject(db, subject_id)
    records = await _load_records(db, student_id=student_id, subjects=[subject.name])
    return SubjectAttendanceStat(
        subject=subject.name,
        stat=aggregator.subject_stats(records, student_id, subject.name, settings.attendance_risk_threshold),
    )


async def get_period_stats(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    window_start: date,
    window_end: date,
    *,
    student_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
) -> PeriodStatsResponse:
    """Stats for a student, a subject, or a student in a subject over an inclusive date window."""
    if student_id is None and subject_id is None:
        raise ValidationError("Provide student_id, subject_id or both")
    if window_start > window_end:
        raise ValidationError("start must be on or before end")
    subject_name = None
    if subject_id is not None:
        subject = await subject_service.get_subject(db, subject_id)
        subject_name = subject.name
        if student_id is None:
            subject_service.ensure_can_manage_subject(subject, user_id, user_role)
    if student_id is not None:
        await ensure_can_view_student(db, user_id, user_role, student_id)
    records = await _load_records(
        db,
        student_id=student_id,
        subjects=[subject_name] if subject_name else None,
        date_from=window_start,
        date_to=window_end,
    )
    return PeriodStatsResponse(
        start=window_start,
        end=window_end,
        student_id=student_id,
        subject=subject_name,
        stat=aggregator.period_stats(
            records, window_start, window_end,
            student_id=student_id,
            subject=subject_name,
            threshold=settings.attendance_risk_threshold,
        ),
    )


async def get_student_series(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    student_id: UUID,
    granularity: str,
    end_date: date,
    periods: int,
) -> List[PeriodAttendanceStat]:
    """Day, week or month buckets ending at ``end_date`` for the student's charts."""
    if granularity not in SERIES_GRANULARITIES:
        raise ValidationError(f"granularity must be one of {', '.join(SERIES_GRANULARITIES)}")
    await ensure_can_view_student(db, user_id, user_role, student_id)
    records = await _load_records(db, student_id=student_id, date_to=end_date)
    threshold = settings.attendance_risk_threshold
    if granularity == "day":
        return aggregator.daily_breakdown(records, end_date, periods, threshold)
    if granularity == "week":
        return aggregator.weekly_breakdown(records, end_date, periods, threshold)
    return aggregator.monthly_breakdown(records, end_date, periods, threshold)


async def get_student_calendar(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    student_id: UUID,
    year: int,
    month: int,
) -> List[CalendarDay]:
    await ensure_can_view_student(db, user_id, user_role, student_id)
    records = await _load_records(db, student_id=student_id)
    return [
        CalendarDay(date=day, status=status_val)
        for day, status_val in aggregator.calendar_map(records, year, month).items()
    ]


async def get_subject_overview(
    db: AsyncSession,
    user_id: UUID,
    user_role: str,
    subject_id: UUID,
    today: Optional[date] = None,
) -> SubjectOverviewResponse:
    """Per enrolled student attendance in the subject; at-risk students listed separately."""
    subject = await subject_service.get_subject(db, subject_id)
    subject_service.ensure_can_manage_subject(subject, user_id, user_role)
    today = today or date.today()
    threshold = settings.attendance_risk_threshold
    students = await subject_service.get_students_enrolled_in_subject(db, subject_id)
    records = await _load_records(db, subjects=[subject.name])
    per_student = aggregator.subject_overview(students, records, subject.name, threshold)
    enrolled_ids = {s.id for s in students}
    return SubjectOverviewResponse(
        subject_id=subject.id,
        subject=subject.name,
        students=per_student,
        at_risk_student_ids=[row.student_id for row in per_student if row.stat.at_risk],
        last_7_days=aggregator.daily_breakdown(
            [r for r in records if r.student_id in enrolled_ids], today, 7, threshold,
        ),
    )
