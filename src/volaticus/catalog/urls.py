from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from volaticus.core.config import logger
from volaticus.core.exceptions import CatalogError, Conflict
from volaticus.db.base import utcnow
from volaticus.db.session import transaction, violates
from volaticus.models.url import ClickEvent, ShortenedURL

TOP_LIMIT = 10
ANALYTICS_DAYS = 30


@dataclass
class URLAnalytics:
    total_clicks: int = 0
    unique_clicks: int = 0
    top_referrers: List[tuple] = field(default_factory=list)
    top_countries: List[tuple] = field(default_factory=list)
    clicks_by_day: List[tuple] = field(default_factory=list)


def create(db: Session, url: ShortenedURL) -> ShortenedURL:
    """
    Insert a shortened URL.

    Raises:
        Conflict: If an active row already holds the short code
        CatalogError: On any other database failure
    """
    try:
        with transaction(db):
            db.add(url)
            db.flush()
    except IntegrityError as e:
        if violates(e, "short_code", "active_code"):
            raise Conflict("Short code already exists") from e
        logger.error(f"Failed to insert short URL {url.short_code}: {e}")
        raise CatalogError() from e
    return url


def get_by_id(db: Session, url_id: UUID) -> Optional[ShortenedURL]:
    return db.query(ShortenedURL).filter(ShortenedURL.id == url_id).first()


def get_by_short_code(db: Session, short_code: str, now: Optional[datetime] = None) -> Optional[ShortenedURL]:
    """
    Look up a short code that can be resolved.

    Inactive and expired rows are filtered in the query itself and are
    indistinguishable from missing ones.
    """
    now = now or utcnow()
    return (
        db.query(ShortenedURL)
        .filter(
            ShortenedURL.short_code == short_code,
            ShortenedURL.is_active.is_(True),
            or_(ShortenedURL.expires_at.is_(None), ShortenedURL.expires_at > now),
        )
        .first()
    )


def get_expired_by_short_code(db: Session, short_code: str, now: Optional[datetime] = None) -> Optional[ShortenedURL]:
    """Active row whose expiry has passed but that the worker has not deactivated yet."""
    now = now or utcnow()
    return (
        db.query(ShortenedURL)
        .filter(
            ShortenedURL.short_code == short_code,
            ShortenedURL.is_active.is_(True),
            ShortenedURL.expires_at.isnot(None),
            ShortenedURL.expires_at <= now,
        )
        .first()
    )


def get_active_by_short_code(db: Session, short_code: str) -> Optional[ShortenedURL]:
    return (
        db.query(ShortenedURL)
        .filter(ShortenedURL.short_code == short_code, ShortenedURL.is_active.is_(True))
        .first()
    )


def code_in_use(db: Session, short_code: str) -> bool:
    return (
        db.query(ShortenedURL.id)
        .filter(ShortenedURL.short_code == short_code, ShortenedURL.is_active.is_(True))
        .first()
        is not None
    )


def list_by_owner(db: Session, owner_id: UUID) -> List[ShortenedURL]:
    return (
        db.query(ShortenedURL)
        .filter(ShortenedURL.user_id == owner_id, ShortenedURL.is_active.is_(True))
        .order_by(ShortenedURL.created_at.desc())
        .all()
    )


def increment_access(db: Session, url_id: UUID) -> bool:
    with transaction(db):
        updated = (
            db.query(ShortenedURL)
            .filter(ShortenedURL.id == url_id)
            .update(
                {
                    ShortenedURL.access_count: ShortenedURL.access_count + 1,
                    ShortenedURL.last_accessed_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
    return updated > 0


def soft_delete(db: Session, url_id: UUID) -> bool:
    with transaction(db):
        updated = (
            db.query(ShortenedURL)
            .filter(ShortenedURL.id == url_id, ShortenedURL.is_active.is_(True))
            .update({ShortenedURL.is_active: False}, synchronize_session="fetch")
        )
    return updated > 0


def update(db: Session, url: ShortenedURL) -> ShortenedURL:
    with transaction(db):
        db.add(url)
    return url


def deactivate_expired(db: Session, now: Optional[datetime] = None) -> List[str]:
    """
    Deactivate every active URL whose expiry has passed.

    Returns:
        The short codes that were deactivated
    """
    now = now or utcnow()
    expired = (
        ShortenedURL.is_active.is_(True),
        ShortenedURL.expires_at.isnot(None),
        ShortenedURL.expires_at < now,
    )
    with transaction(db):
        codes = [code for (code,) in db.query(ShortenedURL.short_code).filter(*expired).all()]
        if codes:
            db.query(ShortenedURL).filter(*expired).update(
                {ShortenedURL.is_active: False}, synchronize_session="fetch"
            )
    return codes


def record_click(db: Session, event: ClickEvent) -> ClickEvent:
    with transaction(db):
        db.add(event)
    return event


def analytics_for(db: Session, url_id: UUID, now: Optional[datetime] = None) -> URLAnalytics:
    """
    Assemble click analytics for one URL.

    Args:
        db: Database session
        url_id: Shortened URL id
        now: Reference time for the per-day window

    Returns:
        Totals, distinct IPs, top referrers and countries and per-day counts
        for the last 30 days, most recent day first
    """
    now = now or utcnow()
    by_url = ClickEvent.url_id == url_id

    total, unique = (
        db.query(func.count(ClickEvent.id), func.count(func.distinct(ClickEvent.ip_address)))
        .filter(by_url)
        .one()
    )

    referrer_count = func.count(ClickEvent.id).label("count")
    referrers = (
        db.query(ClickEvent.referrer, referrer_count)
        .filter(by_url, ClickEvent.referrer != "")
        .group_by(ClickEvent.referrer)
        .order_by(referrer_count.desc())
        .limit(TOP_LIMIT)
        .all()
    )

    country_count = func.count(ClickEvent.id).label("count")
    countries = (
        db.query(ClickEvent.country_code, country_count)
        .filter(by_url)
        .group_by(ClickEvent.country_code)
        .order_by(country_count.desc())
        .limit(TOP_LIMIT)
        .all()
    )

    day = func.date(ClickEvent.clicked_at).label("day")
    per_day = (
        db.query(day, func.count(ClickEvent.id))
        .filter(by_url, ClickEvent.clicked_at >= now - timedelta(days=ANALYTICS_DAYS))
        .group_by(day)
        .order_by(day.desc())
        .limit(ANALYTICS_DAYS)
        .all()
    )

    return URLAnalytics(
        total_clicks=total or 0,
        unique_clicks=unique or 0,
        top_referrers=[(referrer, n) for referrer, n in referrers],
        top_countries=[(country, n) for country, n in countries],
        clicks_by_day=[(str(d), n) for d, n in per_day],
    )
