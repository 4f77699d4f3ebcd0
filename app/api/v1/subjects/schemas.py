from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubjectCreate(BaseModel):
    department_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    semester: Optional[int] = Field(None, ge=1, le=12)
    faculty_id: Optional[UUID] = Field(None, description="Faculty member who marks attendance")


class SubjectResponse(BaseModel):
    id: UUID
    department_id: UUID
    name: str
    code: str
    semester: Optional[int] = None
    faculty_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class EnrolledStudentResponse(BaseModel):
    """Student with an approved registration for the subject."""

    id: UUID
    full_name: str
    email: str
    department_id: Optional[UUID] = None
    semester: Optional[int] = None

    class Config:
        from_attributes = True
