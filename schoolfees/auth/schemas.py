from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user for role checks.
    tenant_id and campus_id scope every fee query; id is recorded as collected_by on payments.
    """

    id: UUID
    tenant_id: UUID
    role: str
    username: str
    campus_id: Optional[int] = None  # None for tenant-wide users without a campus context
