from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller resolved from the bearer token."""

    id: UUID
    role: str
    full_name: str
    department_id: Optional[UUID] = None
