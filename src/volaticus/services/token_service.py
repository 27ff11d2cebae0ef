import base64
import hashlib
import hmac
import secrets
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from volaticus.catalog import tokens as token_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import (
    Conflict,
    EntropyError,
    InvalidInput,
    NotFound,
    Unauthorized,
    VolaticusError,
)
from volaticus.db.base import as_utc, utcnow
from volaticus.models.token import APIToken

TOKEN_BYTES = 32
TOKEN_ATTEMPTS = 3


def generate_token_value(secret: str) -> str:
    """
    Build an opaque token: 32 random bytes followed by their HMAC-SHA256
    under the server secret, base64url encoded.
    """
    try:
        raw = secrets.token_bytes(TOKEN_BYTES)
    except (OSError, NotImplementedError) as e:
        raise EntropyError() from e
    signature = hmac.new(secret.encode(), raw, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(raw + signature).decode()


def issue_token(
    db: Session,
    owner_id: UUID,
    name: str,
    secret: str,
    expires_at: Optional[datetime] = None,
) -> APIToken:
    """
    Issue a new API token.

    Args:
        db: Database session
        owner_id: User the token authenticates as
        name: Human readable label
        secret: Server HMAC key
        expires_at: Optional expiry, must lie in the future

    Returns:
        The stored token row; ``token`` holds the value to hand out

    Raises:
        InvalidInput: If the name is empty or the expiry is in the past
        Conflict: If every generated value collided
    """
    name = (name or "").strip()
    if not name:
        raise InvalidInput("Token name is required")
    if expires_at is not None:
        expires_at = as_utc(expires_at)
        if expires_at <= utcnow():
            raise InvalidInput("Expiration must be in the future")

    for attempt in range(1, TOKEN_ATTEMPTS + 1):
        value = generate_token_value(secret)
        if token_catalog.exists(db, value):
            logger.warning(f"API token collision on attempt {attempt}/{TOKEN_ATTEMPTS}")
            continue
        try:
            token = token_catalog.create(
                db,
                APIToken(user_id=owner_id, name=name, token=value, expires_at=expires_at, is_active=True),
            )
        except Conflict:
            logger.warning(f"API token collision on attempt {attempt}/{TOKEN_ATTEMPTS}")
            continue
        logger.info(f"Issued API token '{name}' for user {owner_id}")
        return token

    raise Conflict("Failed to generate a unique token")


def validate_token(db: Session, value: str) -> APIToken:
    """
    Check a presented token and return its row.

    Raises:
        Unauthorized: If the token is unknown, inactive, revoked or expired
    """
    if not value:
        raise Unauthorized("Missing API token")

    token = token_catalog.get_by_token(db, value)
    if token is None:
        raise Unauthorized("Invalid API token")
    if not token.is_valid(utcnow()):
        raise Unauthorized("API token is revoked or expired")

    try:
        token_catalog.update_last_used(db, token.id)
    except VolaticusError as e:
        logger.warning(f"Failed to update last use of token {token.id}: {e}")

    return token


def list_tokens(db: Session, owner_id: UUID) -> List[APIToken]:
    return token_catalog.list_by_owner(db, owner_id)


def revoke_token(db: Session, owner_id: UUID, token_id: UUID) -> None:
    if not token_catalog.revoke(db, owner_id, token_id):
        raise NotFound("Token not found")
    logger.info(f"Revoked API token {token_id} for user {owner_id}")


def delete_token(db: Session, owner_id: UUID, token_id: UUID) -> None:
    if not token_catalog.delete(db, owner_id, token_id):
        raise NotFound("Token not found")
    logger.info(f"Deleted API token {token_id} for user {owner_id}")
