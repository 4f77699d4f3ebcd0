"""Attendance API router."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from . import service
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

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])


# ----- Records -----
@router.get(
    "",
    response_model=List[AttendanceRecordResponse],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def list_attendance(
    student_id: Optional[UUID] = None,
    subject: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Admin: all. Faculty: subjects they teach. Student: own only."""
    try:
        return await service.list_attendance(
            db,
            current_user.id,
            current_user.role,
            student_id=student_id,
            subject=subject,
            date_from=date_from,
            date_to=date_to,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/mark",
    response_model=AttendanceMarkResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("attendance", "create"))],
)
async def mark_attendance(
    payload: AttendanceMarkRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Save the attendance grid for a subject and date. Re-saving a day updates it."""
    try:
        return await service.mark_attendance(db, current_user.id, current_user.role, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/roster",
    response_model=SessionRosterResponse,
    dependencies=[Depends(check_permission("attendance", "create"))],
)
async def get_session_roster(
    subject_id: UUID,
    att_date: date = Query(..., alias="date", description="Session date"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Enrolled students for the session, unmarked ones defaulting to present."""
    try:
        return await service.get_session_roster(db, current_user.id, current_user.role, subject_id, att_date)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Statistics -----
@router.get(
    "/stats/period",
    response_model=PeriodStatsResponse,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_period_stats(
    start: date,
    end: date,
    student_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Attendance between two dates, inclusive, for a student and/or a subject."""
    try:
        return await service.get_period_stats(
            db,
            current_user.id,
            current_user.role,
            start,
            end,
            student_id=student_id,
            subject_id=subject_id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/students/{student_id}/summary",
    response_model=StudentAttendanceSummary,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_student_summary(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Overall and per-subject attendance, recovery target and recent trends."""
    try:
        return await service.get_student_summary(db, current_user.id, current_user.role, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/students/{student_id}/subjects/{subject_id}",
    response_model=SubjectAttendanceStat,
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_student_subject_stats(
    student_id: UUID,
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student_subject_stats(
            db, current_user.id, current_user.role, student_id, subject_id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/students/{student_id}/series",
    response_model=List[PeriodAttendanceStat],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_student_series(
    student_id: UUID,
    granularity: str = Query("month", description="day, week or month"),
    periods: int = Query(6, ge=1, le=24),
    end: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student_series(
            db,
            current_user.id,
            current_user.role,
            student_id,
            granularity,
            end or date.today(),
            periods,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/students/{student_id}/calendar",
    response_model=List[CalendarDay],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def get_student_calendar(
    student_id: UUID,
    year: int = Query(..., ge=1, le=9999),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return await service.get_student_calendar(db, current_user.id, current_user.role, student_id, year, month)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/subjects/{subject_id}/overview",
    response_model=SubjectOverviewResponse,
    dependencies=[Depends(check_permission("attendance", "create"))],
)
async def get_subject_overview(
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Faculty view: each enrolled student's attendance in the subject and who is at risk."""
    try:
        return await service.get_subject_overview(db, current_user.id, current_user.role, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
