from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import BulkOutcome, RegistrationStatus


class RegistrationCreate(BaseModel):
    """Student asks to join a subject. The student is the caller."""

    subject_id: UUID


class RegistrationResponse(BaseModel):
    id: UUID
    student_id: UUID
    subject_id: UUID
    status: RegistrationStatus
    created_at: datetime
    updated_at: datetime
    student_name: Optional[str] = None
    student_email: Optional[str] = None
    subject_name: Optional[str] = None
    subject_code: Optional[str] = None

    class Config:
        from_attributes = True


class RegistrationRemovalResponse(BaseModel):
    """Result of deleting a registration. ``cascaded`` is set when it was approved."""

    id: UUID
    previous_status: RegistrationStatus
    cascaded: bool
    attendance_removed: int = 0
    enrollment_removed: bool = False


# ----- Bulk -----
class BulkTransitionRequest(BaseModel):
    ids: List[UUID] = Field(..., description="Registrations to change; duplicates are ignored")
    # Validated in the service so a bad value yields a ValidationError like an empty id list
    status: str = Field(..., description="approved or rejected")


class BulkItemResult(BaseModel):
    id: UUID
    outcome: BulkOutcome
    message: str
    error_code: Optional[str] = None  # NOT_FOUND, INVALID_TRANSITION, STORE_ERROR, ...


class BulkTransitionResponse(BaseModel):
    target_status: Literal["approved", "rejected"]
    succeeded: int
    failed: int
    results: List[BulkItemResult]


# ----- Dashboard stats -----
class DepartmentRegistrationCount(BaseModel):
    department_id: UUID
    department_code: str
    pending: int
    approved: int


class RegistrationStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    by_department: List[DepartmentRegistrationCount]
