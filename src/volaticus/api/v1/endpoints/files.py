from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from volaticus.api.deps import get_current_user, get_db, get_upload_service, parse_uuid
from volaticus.models.upload import UploadedItem
from volaticus.schemas.upload import (
    UploadList,
    UploadResponse,
    UploadStats,
    VerifyResponse,
)
from volaticus.services.upload_service import UploadService

router = APIRouter()


def _content_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    return int(value) if value and value.isdigit() else None


def _item(service: UploadService, item: UploadedItem) -> dict:
    return {
        "id": item.id,
        "reference": item.reference,
        "url_style": item.url_style,
        "url": service.file_url(item.reference),
        "original_name": item.original_name,
        "mime_type": item.mime_type,
        "file_size": item.file_size,
        "access_count": item.access_count,
        "created_at": item.created_at,
        "last_accessed_at": item.last_accessed_at,
        "expires_at": item.expires_at,
    }


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    style: str = Form(""),
    url_type: Optional[str] = Header(None, alias="Url-Type"),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    """
    Upload a file and get its short URL.

    The reference style comes from the ``style`` form field or the
    ``Url-Type`` header; timestamp is used when neither is given.
    Works with a session token or an API token.
    """
    result = service.upload(
        db,
        current_user.id,
        file.file if file else None,
        file.filename if file else None,
        style=style or url_type or "",
        content_length=_content_length(request),
        declared_size=file.size if file else None,
    )
    item = result.item
    return {
        "id": item.id,
        "reference": item.reference,
        "url_style": item.url_style,
        "url": result.url,
        "original_name": item.original_name,
        "mime_type": item.mime_type,
        "file_size": item.file_size,
        "expires_at": item.expires_at,
    }


@router.post("/verify", response_model=VerifyResponse)
def verify_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    """
    Check a file against the size limit and quota without storing it.
    """
    validated = service.verify(
        db,
        current_user.id,
        file.file if file else None,
        file.filename if file else None,
        content_length=_content_length(request),
        declared_size=file.size if file else None,
    )
    return {"filename": validated.filename, "size": validated.size, "mime_type": validated.mime_type}


@router.get("", response_model=UploadList)
def list_files(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    items, total = service.list_items(db, current_user.id, page=page, limit=limit)
    return {
        "items": [_item(service, item) for item in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/stats", response_model=UploadStats)
def file_stats(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    stats = service.stats(db, current_user.id)
    return {
        "total_files": stats.total_files,
        "total_size": stats.total_size,
        "total_views": stats.total_views,
        "top_mime_types": [{"mime_type": mime, "count": n} for mime, n in stats.top_mime_types],
    }


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    item_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: UploadService = Depends(get_upload_service),
):
    service.delete_item(db, current_user.id, parse_uuid(item_id))
