"""Caller and member context schemas."""

import uuid

from pydantic import BaseModel

STAFF_ROLES = frozenset({"staff", "admin"})


class Actor(BaseModel):
    """Caller identity as forwarded by the gateway."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID | None = None
    role: str = "alumni"
    department: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class MemberContext(BaseModel):
    """Read-only identity snapshot from the identity collaborator."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID | None = None
    role: str | None = None
    department: str | None = None
    graduation_year: int | None = None
    program: str | None = None
    display_name: str | None = None
    email: str | None = None

    model_config = {"frozen": True}
