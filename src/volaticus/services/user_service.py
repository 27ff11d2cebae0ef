from datetime import datetime, timedelta, UTC
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from volaticus.catalog import urls as url_catalog
from volaticus.catalog import users as user_catalog
from volaticus.core.config import settings, get_redis, logger
from volaticus.core.exceptions import Conflict, Unauthorized
from volaticus.models.user import User
from volaticus.services.url_service import evict_url

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password to compare against

    Returns:
        True if passwords match, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT session token.

    Args:
        data: Claims to encode; "sub" holds the user id
        expires_delta: Lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode a session token that has not been logged out.

    Raises:
        Unauthorized: If the token is invalid, expired or blacklisted
    """
    try:
        if get_redis().exists(f"blacklist:token:{token}"):
            logger.warning("Attempt to use blacklisted token")
            raise Unauthorized("Token has been revoked")
    except RedisError as e:
        logger.error(f"Redis error when checking token blacklist: {e}")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise Unauthorized("Could not validate credentials") from e

    if not payload.get("sub"):
        logger.warning("Token has no subject claim")
        raise Unauthorized("Could not validate credentials")
    return payload


def invalidate_token(token: str) -> None:
    """
    Blacklist a session token until it would have expired anyway.

    Args:
        token: JWT token to invalidate
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise Unauthorized("Could not validate credentials") from e

    exp = payload.get("exp")
    if not exp:
        return
    ttl = max(1, int(exp - datetime.now(UTC).timestamp()))
    try:
        get_redis().setex(f"blacklist:token:{token}", ttl, "1")
        logger.info(f"Token added to blacklist for {ttl} seconds")
    except RedisError as e:
        logger.error(f"Error adding token to blacklist: {e}")


def register_user(db: Session, email: str, username: str, password: str) -> User:
    """
    Create a new user.

    Raises:
        Conflict: If email already registered or username already taken
    """
    if user_catalog.get_by_email(db, email):
        raise Conflict("Email already registered")
    if user_catalog.get_by_username(db, username):
        raise Conflict("Username already taken")

    user = User(email=email, username=username, hashed_password=get_password_hash(password))
    user = user_catalog.create(db, user)
    logger.info(f"Registered user {user.username}")
    return user


def authenticate_user(db: Session, login: str, password: str) -> Optional[User]:
    """
    Authenticate a user with username or email and password.

    Inactive users never authenticate.

    Returns:
        User object if authentication successful, None otherwise
    """
    user = user_catalog.get_by_email(db, login) or user_catalog.get_by_username(db, login)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def delete_user(db: Session, user: User) -> None:
    """
    Delete a user and drop the cached lookups of their short URLs.

    The cache entries are evicted after the commit so a concurrent resolve
    cannot repopulate them from rows that still exist.
    """
    codes = [url.short_code for url in url_catalog.list_by_owner(db, user.id)]
    user_catalog.delete(db, user)
    for code in codes:
        evict_url(code)
    logger.info(f"Deleted user {user.username} and evicted {len(codes)} cached URLs")
