from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class URLCreate(BaseModel):
    url: str
    vanity_code: Optional[str] = None
    expires_at: Optional[datetime] = None


class URLExpirationUpdate(BaseModel):
    expires_at: Optional[datetime] = None


class URL(BaseModel):
    id: UUID
    original_url: str
    short_code: str
    short_url: str
    is_vanity: bool
    access_count: int
    created_at: datetime
    last_accessed_at: Optional[datetime]
    expires_at: Optional[datetime]


class Count(BaseModel):
    value: str
    count: int


class URLAnalytics(BaseModel):
    url: URL
    total_clicks: int
    unique_clicks: int
    top_referrers: List[Count]
    top_countries: List[Count]
    clicks_by_day: List[Count]
