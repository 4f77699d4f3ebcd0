import uuid
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class AttendanceRecord(Base):
    """Subject attendance: one per student per subject per day. Re-marking updates the row."""

    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("student_id", "subject", "date", name="uq_attendance_student_subject_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    faculty_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    subject = Column(String(255), nullable=False, index=True)  # Subject name
    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False)  # present, absent, late
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])
    marker = relationship("User", foreign_keys=[faculty_id])
