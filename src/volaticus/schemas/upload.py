from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class UploadResponse(BaseModel):
    id: UUID
    reference: str
    url_style: str
    url: str
    original_name: str
    mime_type: str
    file_size: int
    expires_at: datetime


class VerifyResponse(BaseModel):
    filename: str
    size: int
    mime_type: str


class UploadedItem(BaseModel):
    id: UUID
    reference: str
    url_style: str
    url: str
    original_name: str
    mime_type: str
    file_size: int
    access_count: int
    created_at: datetime
    last_accessed_at: Optional[datetime]
    expires_at: datetime


class UploadList(BaseModel):
    items: List[UploadedItem]
    total: int
    page: int
    limit: int


class MimeTypeCount(BaseModel):
    mime_type: str
    count: int


class UploadStats(BaseModel):
    total_files: int
    total_size: int
    total_views: int
    top_mime_types: List[MimeTypeCount]
