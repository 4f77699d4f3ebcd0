"""Registration API router."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission, require_admin
from app.auth.schemas import CurrentUser
from app.core.enums import RegistrationStatus, UserRole
from app.core.exceptions import ServiceError
from app.db.session import get_db, get_session_factory

from . import bulk, service
from .schemas import (
    BulkTransitionRequest,
    BulkTransitionResponse,
    RegistrationCreate,
    RegistrationRemovalResponse,
    RegistrationResponse,
    RegistrationStats,
)

router = APIRouter(prefix="/api/v1/registrations", tags=["registrations"])


@router.get(
    "",
    response_model=List[RegistrationResponse],
    dependencies=[Depends(check_permission("registrations", "read"))],
)
async def list_registrations(
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = None,
    subject_id: Optional[UUID] = None,
    department_id: Optional[UUID] = None,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Admin: all registrations with filters. Student: own only."""
    if current_user.role == UserRole.STUDENT.value:
        student_id = current_user.id
    return await service.list_registrations(
        db,
        status_filter=status_filter.value if status_filter else None,
        student_id=student_id,
        subject_id=subject_id,
        department_id=department_id,
    )


@router.get("/stats", response_model=RegistrationStats)
async def get_registration_stats(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Counts per status and per department for the admin dashboard."""
    return await service.registration_stats(db)


@router.post(
    "",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("registrations", "create"))],
)
async def request_registration(
    payload: RegistrationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Student requests a subject. The registration starts as pending."""
    try:
        return await service.request_registration(db, current_user.id, payload.subject_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/bulk", response_model=BulkTransitionResponse)
async def bulk_transition(
    payload: BulkTransitionRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    current_user: CurrentUser = Depends(require_admin),
):
    """Approve or reject many registrations. Always returns one result per id."""
    try:
        return await bulk.bulk_transition(
            session_factory,
            payload.ids,
            payload.status,
            performed_by=current_user.id,
            performed_by_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{registration_id}/approve", response_model=RegistrationResponse)
async def approve_registration(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Approve a pending registration; the student is enrolled in the subject."""
    try:
        return await service.transition(
            db,
            registration_id,
            RegistrationStatus.APPROVED,
            performed_by=current_user.id,
            performed_by_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{registration_id}/reject", response_model=RegistrationResponse)
async def reject_registration(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    """Reject a pending registration."""
    try:
        return await service.transition(
            db,
            registration_id,
            RegistrationStatus.REJECTED,
            performed_by=current_user.id,
            performed_by_role=current_user.role,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/{registration_id}",
    response_model=RegistrationRemovalResponse,
    dependencies=[Depends(check_permission("registrations", "delete"))],
)
async def delete_registration(
    registration_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Admin: delete any registration, unenrolling approved ones. Student: withdraw own request."""
    try:
        if current_user.role == UserRole.ADMIN.value:
            return await service.remove(
                db,
                registration_id,
                performed_by=current_user.id,
                performed_by_role=current_user.role,
            )
        return await service.withdraw_registration(db, current_user.id, registration_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
