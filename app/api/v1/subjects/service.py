from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.models import User
from app.core.enums import UserRole
from app.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.models import Department, Enrollment, Subject

from .schemas import SubjectCreate, SubjectResponse


async def create_subject(db: AsyncSession, payload: SubjectCreate) -> SubjectResponse:
    """Create a subject. Name and code must be unique."""
    if not await db.get(Department, payload.department_id):
        raise NotFoundError(f"Department {payload.department_id} not found")
    if payload.faculty_id is not None:
        faculty = await db.get(User, payload.faculty_id)
        if not faculty or faculty.role != UserRole.FACULTY.value:
            raise ValidationError("faculty_id must reference a faculty member")
    name = payload.name.strip()
    code = payload.code.strip().upper()
    existing = (await db.execute(
        select(Subject).where(or_(Subject.name == name, Subject.code == code))
    )).scalars().first()
    if existing:
        raise ConflictError(f"Subject with name '{name}' or code '{code}' already exists")
    subject = Subject(
        department_id=payload.department_id,
        name=name,
        code=code,
        semester=payload.semester,
        faculty_id=payload.faculty_id,
    )
    db.add(subject)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Subject with name '{name}' or code '{code}' already exists")
    await db.refresh(subject)
    return SubjectResponse.model_validate(subject)


async def list_subjects(
    db: AsyncSession,
    department_id: Optional[UUID] = None,
    faculty_id: Optional[UUID] = None,
) -> List[SubjectResponse]:
    stmt = select(Subject)
    if department_id:
        stmt = stmt.where(Subject.department_id == department_id)
    if faculty_id:
        stmt = stmt.where(Subject.faculty_id == faculty_id)
    result = await db.execute(stmt.order_by(Subject.code))
    return [SubjectResponse.model_validate(s) for s in result.scalars().all()]


async def get_subject(db: AsyncSession, subject_id: UUID) -> Subject:
    subject = await db.get(Subject, subject_id)
    if not subject:
        raise NotFoundError(f"Subject {subject_id} not found")
    return subject


def ensure_can_manage_subject(subject: Subject, user_id: UUID, user_role: str) -> None:
    """Admins manage every subject; faculty only the subjects they teach."""
    if user_role == UserRole.ADMIN.value:
        return
    if user_role == UserRole.FACULTY.value and subject.faculty_id == user_id:
        return
    raise PermissionDeniedError(f"You are not assigned to {subject.name}")


async def get_students_enrolled_in_subject(db: AsyncSession, subject_id: UUID) -> List[User]:
    """Students currently enrolled (approved) in the subject, by name."""
    await get_subject(db, subject_id)
    result = await db.execute(
        select(User)
        .join(Enrollment, Enrollment.student_id == User.id)
        .where(Enrollment.subject_id == subject_id)
        .order_by(User.full_name, User.id)
    )
    return list(result.scalars().all())
