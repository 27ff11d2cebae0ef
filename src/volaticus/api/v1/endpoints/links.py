from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from volaticus.api.deps import get_current_user, get_db, get_url_service, parse_uuid
from volaticus.models.url import ShortenedURL
from volaticus.schemas.url import URL, URLAnalytics, URLCreate, URLExpirationUpdate
from volaticus.services.url_service import URLService

router = APIRouter()


def _url(service: URLService, url: ShortenedURL) -> dict:
    return {
        "id": url.id,
        "original_url": url.original_url,
        "short_code": url.short_code,
        "short_url": service.short_url(url.short_code),
        "is_vanity": url.is_vanity,
        "access_count": url.access_count,
        "created_at": url.created_at,
        "last_accessed_at": url.last_accessed_at,
        "expires_at": url.expires_at,
    }


def _counts(pairs) -> list:
    return [{"value": value, "count": count} for value, count in pairs]


@router.post("/shorten", response_model=URL, status_code=status.HTTP_201_CREATED)
def create_link(
    url: URLCreate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: URLService = Depends(get_url_service),
):
    """
    Create a shortened URL, optionally with a vanity code and an expiry.
    """
    row = service.create_short_url(db, current_user.id, url.url, url.vanity_code, url.expires_at)
    return _url(service, row)


@router.get("", response_model=List[URL])
def list_links(
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: URLService = Depends(get_url_service),
):
    return [_url(service, row) for row in service.list_user_urls(db, current_user.id)]


@router.get("/{url_id}/analytics", response_model=URLAnalytics)
def link_analytics(
    url_id: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: URLService = Depends(get_url_service),
):
    """
    Click analytics for a shortened URL.

    Only the owner may read them.
    """
    row, analytics = service.analytics_for(db, current_user.id, parse_uuid(url_id))
    return {
        "url": _url(service, row),
        "total_clicks": analytics.total_clicks,
        "unique_clicks": analytics.unique_clicks,
        "top_referrers": _counts(analytics.top_referrers),
        "top_countries": _counts(analytics.top_countries),
        "clicks_by_day": _counts(analytics.clicks_by_day),
    }


@router.patch("/{url_id}/expiration", response_model=URL)
def update_link_expiration(
    url_id: str,
    update: URLExpirationUpdate,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: URLService = Depends(get_url_service),
):
    row = service.update_expiration(db, current_user.id, parse_uuid(url_id), update.expires_at)
    return _url(service, row)


@router.delete("/{id_or_code}", status_code=status.HTTP_204_NO_CONTENT)
def delete_link(
    id_or_code: str,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
    service: URLService = Depends(get_url_service),
):
    """
    Deactivate a shortened URL by id or short code.
    """
    service.delete_url(db, current_user.id, id_or_code)
