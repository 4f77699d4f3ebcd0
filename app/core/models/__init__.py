from app.core.models.department import Department
from app.core.models.subject import Subject
from app.core.models.registration import Registration
from app.core.models.enrollment import Enrollment
from app.core.models.attendance_record import AttendanceRecord
from app.core.models.audit_log import AuditLog

__all__ = [
    "AttendanceRecord",
    "AuditLog",
    "Department",
    "Enrollment",
    "Registration",
    "Subject",
]
