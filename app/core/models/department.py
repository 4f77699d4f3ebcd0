import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class Department(Base):
    """Academic department. Subjects and users belong to one."""

    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint("code", name="uq_department_code"),
        UniqueConstraint("name", name="uq_department_name"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(20), nullable=False)  # Uppercased, e.g. CSE
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
