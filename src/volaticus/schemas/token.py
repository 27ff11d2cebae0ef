from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class APITokenCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    expires_at: Optional[datetime] = None


class APIToken(BaseModel):
    id: UUID
    name: str
    created_at: datetime
    last_used_at: Optional[datetime]
    expires_at: Optional[datetime]
    revoked_at: Optional[datetime]
    is_active: bool

    class Config:
        from_attributes = True


class APITokenIssued(APIToken):
    """Returned once, on creation; the token value is never shown again."""

    token: str
