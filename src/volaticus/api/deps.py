from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from volaticus.catalog import users as user_catalog
from volaticus.core.config import logger
from volaticus.core.exceptions import InvalidInput, Unauthorized
from volaticus.db.session import get_db
from volaticus.models.user import User
from volaticus.services.analytics import RequestInfo
from volaticus.services.token_service import validate_token
from volaticus.services.upload_service import UploadService
from volaticus.services.url_service import URLService
from volaticus.services.user_service import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/users/login", auto_error=False)


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.upload_service


def get_url_service(request: Request) -> URLService:
    return request.app.state.url_service


def parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise InvalidInput(f"Invalid id: {value}")


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def get_request_info(request: Request) -> RequestInfo:
    return RequestInfo(
        referrer=request.headers.get("referer", ""),
        user_agent=request.headers.get("user-agent", ""),
        ip_address=client_ip(request),
    )


def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    """
    Resolve the caller from a Bearer credential.

    The credential may be a JWT session token or an API token; session
    tokens are tried first.

    Raises:
        Unauthorized: If the credential is missing or invalid, or the user
            is inactive
    """
    if not token:
        raise Unauthorized("Not authenticated")

    try:
        payload = decode_access_token(token)
    except Unauthorized:
        api_token = validate_token(db, token)
        user = user_catalog.get_by_id(db, api_token.user_id)
    else:
        try:
            user = user_catalog.get_by_id(db, UUID(payload["sub"]))
        except ValueError:
            logger.warning("Token subject is not a user id")
            raise Unauthorized("Could not validate credentials")

    if user is None:
        raise Unauthorized("Could not validate credentials")
    if not user.is_active:
        raise Unauthorized("Inactive user")
    return user
