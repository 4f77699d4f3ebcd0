from typing import Optional, Sequence
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code = "SERVICE_ERROR"

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotFoundError(ServiceError):
    code = "NOT_FOUND"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationError(ServiceError):
    """Structurally invalid request (empty bulk selection, unknown status, ...)."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class PermissionDeniedError(ServiceError):
    code = "FORBIDDEN"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class ConflictError(ServiceError):
    code = "CONFLICT"

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class InvalidTransitionError(ServiceError):
    """Registration is not in a state the requested transition can start from."""

    code = "INVALID_TRANSITION"

    def __init__(self, registration_id: UUID, current_status: str, target_status: str) -> None:
        super().__init__(
            f"Registration {registration_id} is already {current_status}; cannot change it to {target_status}",
            status.HTTP_409_CONFLICT,
        )
        self.registration_id = registration_id
        self.current_status = current_status
        self.target_status = target_status


class CascadeFailureError(ServiceError):
    """
    A removal cascade stopped part way. The steps in ``completed_steps`` are
    applied and durable; ``failed_step`` and everything after it are not.
    """

    code = "CASCADE_FAILURE"

    def __init__(
        self,
        registration_id: UUID,
        failed_step: str,
        completed_steps: Sequence[str],
        cause: Optional[BaseException] = None,
    ) -> None:
        done = ", ".join(completed_steps)
        super().__init__(
            f"Removing registration {registration_id} failed at step '{failed_step}' "
            f"after completing: {done}. Manual cleanup may be required.",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        self.registration_id = registration_id
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.cause = cause
