import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from volaticus.catalog import urls as url_catalog
from volaticus.core.config import get_redis, logger
from volaticus.core.exceptions import (
    CollisionExhausted,
    Conflict,
    Expired,
    Forbidden,
    InvalidInput,
    NotFound,
)
from volaticus.db.base import as_utc, utcnow
from volaticus.models.url import ShortenedURL
from volaticus.services.analytics import ClickRecorder, RequestInfo
from volaticus.services.geoip import GeoIPResolver
from volaticus.services.shortcode import MAX_ATTEMPTS, generate_short_code, validate_vanity_code
from volaticus.services.validation import validate_url

DEFAULT_CACHE_TTL = 3600


@dataclass(frozen=True)
class CachedURL:
    id: UUID
    original_url: str
    expires_at: Optional[datetime]


def serialize_url(url: ShortenedURL) -> dict:
    return {
        "id": str(url.id),
        "original_url": url.original_url,
        "expires_at": url.expires_at.isoformat() if url.expires_at else None,
    }


def deserialize_url(data: dict) -> CachedURL:
    expires_at = None
    if data["expires_at"]:
        expires_at = datetime.fromisoformat(data["expires_at"])
    return CachedURL(id=UUID(data["id"]), original_url=data["original_url"], expires_at=expires_at)


def cache_url(url: ShortenedURL, ttl: int = DEFAULT_CACHE_TTL) -> None:
    """Cache an active URL for resolve, never past its own expiry."""
    if url.expires_at is not None:
        ttl = min(ttl, int((url.expires_at - utcnow()).total_seconds()))
    if ttl <= 0:
        return
    try:
        get_redis().setex(f"url:{url.short_code}", ttl, json.dumps(serialize_url(url)))
    except RedisError as e:
        logger.error(f"Redis error: {e}")


def get_cached_url(short_code: str) -> Optional[CachedURL]:
    try:
        cached = get_redis().get(f"url:{short_code}")
        if cached:
            return deserialize_url(json.loads(cached))
    except (RedisError, ValueError, KeyError) as e:
        logger.error(f"Redis error: {e}")
    return None


def evict_url(short_code: str) -> None:
    try:
        get_redis().delete(f"url:{short_code}")
    except RedisError as e:
        logger.error(f"Redis error: {e}")


class URLService:
    """
    Short URL creation, resolution and management.

    Resolution answers synchronously with the target URL; the click itself
    is handed to the ClickRecorder and written in the background.
    """

    def __init__(
        self,
        geoip: GeoIPResolver,
        recorder: ClickRecorder,
        base_url: str,
        cache_ttl: int = DEFAULT_CACHE_TTL,
    ):
        self.geoip = geoip
        self.recorder = recorder
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl

    def short_url(self, short_code: str) -> str:
        return f"{self.base_url}/s/{short_code}"

    @staticmethod
    def _future_expiry(expires_at: Optional[datetime]) -> Optional[datetime]:
        if expires_at is None:
            return None
        expires_at = as_utc(expires_at)
        if expires_at <= utcnow():
            raise InvalidInput("Expiration must be in the future")
        return expires_at

    def create_short_url(
        self,
        db: Session,
        owner_id: UUID,
        url: str,
        vanity_code: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> ShortenedURL:
        """
        Create a shortened URL.

        Args:
            db: Database session
            owner_id: Creating user
            url: Target http(s) URL
            vanity_code: Custom code; empty means generate one
            expires_at: Optional future expiry

        Returns:
            The created URL row

        Raises:
            InvalidInput: If the URL, vanity code or expiry is invalid
            Conflict: If the vanity code is already in use
            CollisionExhausted: If no free code was generated in 5 attempts
        """
        validate_url(url)
        expires_at = self._future_expiry(expires_at)

        if vanity_code:
            validate_vanity_code(vanity_code)
            if url_catalog.code_in_use(db, vanity_code):
                raise Conflict("Vanity code already in use")
            row = url_catalog.create(
                db,
                ShortenedURL(
                    user_id=owner_id,
                    original_url=url,
                    short_code=vanity_code,
                    expires_at=expires_at,
                    is_vanity=True,
                ),
            )
            cache_url(row, self.cache_ttl)
            return row

        for attempt in range(1, MAX_ATTEMPTS + 1):
            code = generate_short_code()
            if url_catalog.code_in_use(db, code):
                logger.info(f"Short code collision on attempt {attempt}/{MAX_ATTEMPTS}")
                continue
            try:
                row = url_catalog.create(
                    db,
                    ShortenedURL(
                        user_id=owner_id,
                        original_url=url,
                        short_code=code,
                        expires_at=expires_at,
                        is_vanity=False,
                    ),
                )
            except Conflict:
                logger.info(f"Short code collision on attempt {attempt}/{MAX_ATTEMPTS}")
                continue
            cache_url(row, self.cache_ttl)
            return row

        raise CollisionExhausted("Could not generate a unique short code")

    def resolve_short_url(self, db: Session, short_code: str, info: RequestInfo) -> str:
        """
        Resolve a short code to its target and record the click.

        Raises:
            NotFound: If the code is unknown or deactivated
            Expired: If the code exists but has expired
        """
        target = get_cached_url(short_code)
        if target is not None and target.expires_at is not None and target.expires_at <= utcnow():
            target = None

        if target is None:
            row = url_catalog.get_by_short_code(db, short_code)
            if row is None:
                if url_catalog.get_expired_by_short_code(db, short_code) is not None:
                    raise Expired("Short URL has expired")
                raise NotFound("Short URL not found")
            cache_url(row, self.cache_ttl)
            target = CachedURL(id=row.id, original_url=row.original_url, expires_at=row.expires_at)

        location = self.geoip.lookup(info.ip_address)
        self.recorder.record(target.id, info, location)
        return target.original_url

    def list_user_urls(self, db: Session, owner_id: UUID) -> List[ShortenedURL]:
        return url_catalog.list_by_owner(db, owner_id)

    def _owned(self, db: Session, owner_id: UUID, url_id: UUID) -> ShortenedURL:
        row = url_catalog.get_by_id(db, url_id)
        if row is None or not row.is_active:
            raise NotFound("Short URL not found")
        if row.user_id != owner_id:
            raise Forbidden()
        return row

    def analytics_for(
        self, db: Session, owner_id: UUID, url_id: UUID
    ) -> Tuple[ShortenedURL, url_catalog.URLAnalytics]:
        row = self._owned(db, owner_id, url_id)
        return row, url_catalog.analytics_for(db, row.id)

    def delete_url(self, db: Session, owner_id: UUID, id_or_code: str) -> None:
        """Soft delete a URL given either its id or its short code."""
        try:
            row = self._owned(db, owner_id, uuid.UUID(str(id_or_code)))
        except ValueError:
            row = url_catalog.get_active_by_short_code(db, id_or_code)
            if row is None:
                raise NotFound("Short URL not found")
            if row.user_id != owner_id:
                raise Forbidden()

        url_catalog.soft_delete(db, row.id)
        evict_url(row.short_code)
        logger.info(f"Deactivated short URL {row.short_code} for user {owner_id}")

    def update_expiration(
        self, db: Session, owner_id: UUID, url_id: UUID, expires_at: Optional[datetime]
    ) -> ShortenedURL:
        """Set or clear the expiry of an owned URL."""
        row = self._owned(db, owner_id, url_id)
        row.expires_at = self._future_expiry(expires_at)
        row = url_catalog.update(db, row)
        evict_url(row.short_code)
        return row
