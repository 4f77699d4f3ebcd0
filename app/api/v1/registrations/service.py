"""
Subject registration lifecycle: request, approve/reject, withdraw and remove.

A registration moves pending -> approved | rejected and never back. Approval
creates the enrollment; removing an approved registration unenrolls the student
by deleting, in this order, their attendance for the subject, the enrollment
and finally the registration. Each of those steps commits on its own; the
enrollment step locks the enrollment row and sweeps attendance saved since the
first step, so an attendance row can never outlive its enrollment.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.config import settings
from app.core.enums import RegistrationStatus, UserRole
from app.core.exceptions import (
    CascadeFailureError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from app.core.models import AttendanceRecord, Department, Enrollment, Registration, Subject

from .audit_service import log_audit
from .schemas import (
    DepartmentRegistrationCount,
    RegistrationRemovalResponse,
    RegistrationResponse,
    RegistrationStats,
)

logger = logging.getLogger(__name__)

PENDING = RegistrationStatus.PENDING.value
APPROVED = RegistrationStatus.APPROVED.value
REJECTED = RegistrationStatus.REJECTED.value

TRANSITION_TARGETS = (APPROVED, REJECTED)

# Most dependent first
CASCADE_STEPS = ("attendance", "enrollment", "registration")


def parse_target_status(value) -> str:
    """Normalise a requested target status; only approved and rejected are reachable."""
    raw = getattr(value, "value", value)
    if raw not in TRANSITION_TARGETS:
        raise ValidationError(f"Invalid target status: {raw!r}. Use approved or rejected")
    return raw


def _response(reg: Registration, student: Optional[User], subject: Optional[Subject]) -> RegistrationResponse:
    return RegistrationResponse(
        id=reg.id,
        student_id=reg.student_id,
        subject_id=reg.subject_id,
        status=reg.status,
        created_at=reg.created_at,
        updated_at=reg.updated_at,
        student_name=student.full_name if student else None,
        student_email=student.email if student else None,
        subject_name=subject.name if subject else None,
        subject_code=subject.code if subject else None,
    )


async def _to_response(db: AsyncSession, reg: Registration) -> RegistrationResponse:
    student = await db.get(User, reg.student_id)
    subject = await db.get(Subject, reg.subject_id)
    return _response(reg, student, subject)


async def get_registration(db: AsyncSession, registration_id: UUID) -> Registration:
    reg = await db.get(Registration, registration_id)
    if not reg:
        raise NotFoundError(f"Registration {registration_id} not found")
    return reg


# ----- Queries -----
async def list_registrations(
    db: AsyncSession,
    *,
    status_filter: Optional[str] = None,
    student_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    department_id: Optional[UUID] = None,
) -> List[RegistrationResponse]:
    """Newest first. ``department_id`` filters on the student's department."""
    stmt = (
        select(Registration, User, Subject)
        .join(User, Registration.student_id == User.id)
        .join(Subject, Registration.subject_id == Subject.id)
    )
    if status_filter:
        stmt = stmt.where(Registration.status == status_filter)
    if student_id:
        stmt = stmt.where(Registration.student_id == student_id)
    if subject_id:
        stmt = stmt.where(Registration.subject_id == subject_id)
    if department_id:
        stmt = stmt.where(User.department_id == department_id)
    stmt = stmt.order_by(Registration.created_at.desc())
    result = await db.execute(stmt)
    return [_response(reg, student, subject) for reg, student, subject in result.all()]


async def registration_stats(db: AsyncSession) -> RegistrationStats:
    """Counts per status, plus pending/approved per student department."""
    result = await db.execute(
        select(Registration.status, func.count(Registration.id)).group_by(Registration.status)
    )
    counts = {PENDING: 0, APPROVED: 0, REJECTED: 0}
    for status_val, cnt in result.all():
        counts[status_val] = cnt

    dept_result = await db.execute(
        select(Department.id, Department.code, Registration.status, func.count(Registration.id))
        .join(User, User.department_id == Department.id)
        .join(Registration, Registration.student_id == User.id)
        .group_by(Department.id, Department.code, Registration.status)
    )
    by_dept = {}
    for dept_id, dept_code, status_val, cnt in dept_result.all():
        entry = by_dept.setdefault(dept_id, {"code": dept_code, PENDING: 0, APPROVED: 0})
        if status_val in (PENDING, APPROVED):
            entry[status_val] = cnt
    by_department = [
        DepartmentRegistrationCount(
            department_id=dept_id,
            department_code=entry["code"],
            pending=entry[PENDING],
            approved=entry[APPROVED],
        )
        for dept_id, entry in sorted(by_dept.items(), key=lambda item: item[1]["code"])
        if entry[PENDING] or entry[APPROVED]
    ]
    return RegistrationStats(
        total=sum(counts.values()),
        pending=counts[PENDING],
        approved=counts[APPROVED],
        rejected=counts[REJECTED],
        by_department=by_department,
    )


# ----- Student side -----
async def request_registration(
    db: AsyncSession,
    student_id: UUID,
    subject_id: UUID,
) -> RegistrationResponse:
    """Create a pending registration. One registration per student and subject."""
    student = await db.get(User, student_id)
    if not student or student.role != UserRole.STUDENT.value:
        raise ValidationError("Only students can register for subjects")
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError(f"Subject {subject_id} not found")
    existing = (await db.execute(
        select(Registration).where(
            Registration.student_id == student_id,
            Registration.subject_id == subject_id,
        )
    )).scalar_one_or_none()
    if existing:
        raise ConflictError(f"Already registered for {subject.name} ({existing.status})")

    reg = Registration(student_id=student_id, subject_id=subject_id, status=PENDING)
    db.add(reg)
    await db.flush()
    await log_audit(
        db, reg.id, "REQUESTED",
        to_status=PENDING,
        performed_by=student_id,
        performed_by_role=UserRole.STUDENT.value,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Already registered for {subject.name}")
    await db.refresh(reg)
    logger.info("Registration %s requested: student=%s subject=%s", reg.id, student_id, subject_id)
    return _response(reg, student, subject)


async def withdraw_registration(
    db: AsyncSession,
    student_id: UUID,
    registration_id: UUID,
) -> RegistrationRemovalResponse:
    """Student cancels their own pending (or rejected) request. Approved ones need an admin."""
    reg = await get_registration(db, registration_id)
    if reg.student_id != student_id:
        raise PermissionDeniedError("You can only withdraw your own registrations")
    if reg.status == APPROVED:
        raise ConflictError("Approved registrations can only be removed by an administrator")
    return await remove(
        db,
        registration_id,
        performed_by=student_id,
        performed_by_role=UserRole.STUDENT.value,
        action="WITHDRAWN",
    )


# ----- State machine -----
async def _ensure_enrollment(db: AsyncSession, reg: Registration) -> Enrollment:
    """Create the enrollment for an approved registration, or confirm the existing one."""
    enrollment = (await db.execute(
        select(Enrollment).where(
            Enrollment.student_id == reg.student_id,
            Enrollment.subject_id == reg.subject_id,
        )
    )).scalar_one_or_none()
    if enrollment:
        if enrollment.registration_id != reg.id:
            enrollment.registration_id = reg.id
        return enrollment
    enrollment = Enrollment(
        registration_id=reg.id,
        student_id=reg.student_id,
        subject_id=reg.subject_id,
    )
    db.add(enrollment)
    return enrollment


async def transition(
    db: AsyncSession,
    registration_id: UUID,
    target_status,
    *,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
) -> RegistrationResponse:
    """
    Move a pending registration to approved or rejected.

    Raises NotFoundError for unknown ids and InvalidTransitionError when the
    registration is no longer pending, including when another caller changed it
    between our read and our write. Approval does not create attendance.
    """
    target = parse_target_status(target_status)
    reg = await get_registration(db, registration_id)
    if reg.status != PENDING:
        raise InvalidTransitionError(registration_id, reg.status, target)

    # Conditional write: only one of two concurrent callers can win
    result = await db.execute(
        update(Registration)
        .where(Registration.id == registration_id, Registration.status == PENDING)
        .values(status=target, updated_at=datetime.utcnow())
    )
    if result.rowcount == 0:
        await db.rollback()
        fresh = await db.get(Registration, registration_id, populate_existing=True)
        if not fresh:
            raise NotFoundError(f"Registration {registration_id} not found")
        raise InvalidTransitionError(registration_id, fresh.status, target)

    if target == APPROVED:
        await _ensure_enrollment(db, reg)
    await log_audit(
        db, registration_id, target.upper(),
        from_status=PENDING,
        to_status=target,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Student is already enrolled in this subject")
    await db.refresh(reg)
    logger.info("Registration %s %s -> %s by %s", registration_id, PENDING, target, performed_by)
    return await _to_response(db, reg)


# ----- Removal cascade -----
async def _delete_attendance(db: AsyncSession, student_id: UUID, subject_name: str) -> int:
    result = await db.execute(
        delete(AttendanceRecord).where(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.subject == subject_name,
        )
    )
    return result.rowcount or 0


async def _delete_enrollment(db: AsyncSession, student_id: UUID, subject_id: UUID) -> int:
    result = await db.execute(
        delete(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.subject_id == subject_id,
        )
    )
    return result.rowcount or 0


async def _delete_registration(db: AsyncSession, registration_id: UUID, status_val: Optional[str] = None) -> int:
    stmt = delete(Registration).where(Registration.id == registration_id)
    if status_val is not None:
        stmt = stmt.where(Registration.status == status_val)
    result = await db.execute(stmt)
    return result.rowcount or 0


async def _unenroll(db: AsyncSession, student_id: UUID, subject_id: UUID, subject_name: str) -> Tuple[int, int]:
    """
    Delete the enrollment and, in the same transaction, any attendance marked
    for it after the attendance step committed. Returns (enrollments, attendance) deleted.
    """
    # mark_attendance takes a share lock on this row, so a concurrent save either
    # commits before us (and is swept below) or finds no enrollment
    await db.execute(
        select(Enrollment.id)
        .where(Enrollment.student_id == student_id, Enrollment.subject_id == subject_id)
        .with_for_update()
    )
    removed = await _delete_enrollment(db, student_id, subject_id)
    swept = await _delete_attendance(db, student_id, subject_name)
    return removed, swept


async def _run_cascade_step(
    db: AsyncSession,
    registration_id: UUID,
    step: str,
    action: Callable[[], Awaitable[Any]],
):
    """Run one idempotent delete and commit it, retrying store errors up to the configured attempts."""
    attempts = settings.cascade_max_attempts
    attempt = 1
    while True:
        try:
            affected = await action()
            await db.commit()
            return affected
        except SQLAlchemyError as exc:
            await db.rollback()
            if attempt >= attempts:
                raise
            logger.warning(
                "Cascade step '%s' for registration %s failed (attempt %d/%d), retrying: %s",
                step, registration_id, attempt, attempts, exc,
            )
            attempt += 1


async def _record_cascade_failure(
    db: AsyncSession,
    error: CascadeFailureError,
    performed_by: Optional[UUID],
    performed_by_role: Optional[str],
) -> None:
    try:
        await log_audit(
            db, error.registration_id, "CASCADE_FAILED",
            from_status=APPROVED,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            remarks=error.message,
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not write audit entry for failed cascade of registration %s", error.registration_id)


async def remove(
    db: AsyncSession,
    registration_id: UUID,
    *,
    performed_by: Optional[UUID] = None,
    performed_by_role: Optional[str] = None,
    action: str = "REMOVED",
) -> RegistrationRemovalResponse:
    """
    Delete a registration. Pending and rejected ones are deleted directly; an
    approved one is unenrolled first (attendance, then enrollment, then the
    registration).

    A cascade step that keeps failing after earlier steps committed raises
    CascadeFailureError; calling remove again resumes it since every step is
    idempotent. Once the registration is gone a repeat call raises NotFoundError,
    including when a concurrent call removed it first.
    """
    reg = await get_registration(db, registration_id)
    previous_status = reg.status
    student_id = reg.student_id
    subject_id = reg.subject_id

    if previous_status != APPROVED:
        # Only delete the row in the state we read; an approval in between must not be lost
        if not await _delete_registration(db, registration_id, previous_status):
            await db.rollback()
            fresh = await db.get(Registration, registration_id, populate_existing=True)
            if not fresh:
                raise NotFoundError(f"Registration {registration_id} not found")
            raise ConflictError(
                f"Registration {registration_id} changed to {fresh.status} while being removed; reload and try again"
            )
        await log_audit(
            db, registration_id, action,
            from_status=previous_status,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
        )
        await db.commit()
        logger.info("Registration %s (%s) deleted by %s", registration_id, previous_status, performed_by)
        return RegistrationRemovalResponse(id=registration_id, previous_status=previous_status, cascaded=False)

    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError(f"Subject {subject_id} not found")
    subject_name = subject.name

    async def _finish_registration() -> int:
        deleted = await _delete_registration(db, registration_id)
        if not deleted:
            await db.rollback()
            raise NotFoundError(f"Registration {registration_id} not found")
        await log_audit(
            db, registration_id, action,
            from_status=APPROVED,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            remarks=f"Unenrolled from {subject_name}",
        )
        return deleted

    actions = {
        "attendance": lambda: _delete_attendance(db, student_id, subject_name),
        "enrollment": lambda: _unenroll(db, student_id, subject_id, subject_name),
        "registration": _finish_registration,
    }
    affected = {}
    completed: List[str] = []
    for step in CASCADE_STEPS:
        try:
            affected[step] = await _run_cascade_step(db, registration_id, step, actions[step])
        except SQLAlchemyError as exc:
            if not completed:
                raise ServiceError(
                    f"Removing registration {registration_id} failed at step '{step}'; nothing was changed",
                    status.HTTP_503_SERVICE_UNAVAILABLE,
                ) from exc
            error = CascadeFailureError(registration_id, step, completed, cause=exc)
            logger.error(
                "CASCADE FAILURE for registration %s (student=%s subject=%s): step '%s' failed after %s: %s",
                registration_id, student_id, subject_name, step, completed, exc,
            )
            await _record_cascade_failure(db, error, performed_by, performed_by_role)
            raise error from exc
        completed.append(step)

    enrollments_removed, attendance_swept = affected["enrollment"]
    attendance_removed = affected["attendance"] + attendance_swept
    logger.info(
        "Registration %s unenrolled by %s: student=%s subject=%s attendance_removed=%d",
        registration_id, performed_by, student_id, subject_name, attendance_removed,
    )
    return RegistrationRemovalResponse(
        id=registration_id,
        previous_status=APPROVED,
        cascaded=True,
        attendance_removed=attendance_removed,
        enrollment_removed=enrollments_removed > 0,
    )
