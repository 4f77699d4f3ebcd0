"""Subjects offered by a department. Attendance rows refer to a subject by name, so names are unique."""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class Subject(Base):
    __tablename__ = "subjects"
    __table_args__ = (
        UniqueConstraint("code", name="uq_subject_code"),
        UniqueConstraint("name", name="uq_subject_name"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    department_id = Column(UUID(as_uuid=True), ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False)
    semester = Column(Integer, nullable=True)
    # Faculty member who teaches the subject and marks its attendance
    faculty_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    department = relationship("Department", backref="subjects")
    faculty = relationship("User", foreign_keys=[faculty_id])
