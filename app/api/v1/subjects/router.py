from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission, require_admin
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import EnrolledStudentResponse, SubjectCreate, SubjectResponse
from . import service

router = APIRouter(prefix="/api/v1/subjects", tags=["subjects"])


@router.post(
    "",
    response_model=SubjectResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subject(
    payload: SubjectCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    try:
        return await service.create_subject(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=List[SubjectResponse],
    dependencies=[Depends(check_permission("subjects", "read"))],
)
async def list_subjects(
    department_id: Optional[UUID] = None,
    faculty_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
):
    return await service.list_subjects(db, department_id=department_id, faculty_id=faculty_id)


@router.get(
    "/{subject_id}/students",
    response_model=List[EnrolledStudentResponse],
    dependencies=[Depends(check_permission("attendance", "read"))],
)
async def list_enrolled_students(
    subject_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Roster of the subject: students whose registration is approved. Admin or the subject's faculty."""
    try:
        subject = await service.get_subject(db, subject_id)
        service.ensure_can_manage_subject(subject, current_user.id, current_user.role)
        return await service.get_students_enrolled_in_subject(db, subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
