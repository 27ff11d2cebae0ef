from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from volaticus.core.exceptions import Conflict
from volaticus.db.session import transaction, violates
from volaticus.models.upload import UploadedItem
from volaticus.models.url import ShortenedURL
from volaticus.models.user import User


@dataclass
class DashboardStats:
    total_urls: int = 0
    total_clicks: int = 0
    total_files: int = 0
    total_storage: int = 0


def create(db: Session, user: User) -> User:
    """
    Insert a user.

    Raises:
        Conflict: If the email or username is already registered
    """
    try:
        with transaction(db):
            db.add(user)
            db.flush()
    except IntegrityError as e:
        if violates(e, "email"):
            raise Conflict("Email already registered") from e
        raise Conflict("Username already taken") from e
    return user


def get_by_id(db: Session, user_id: UUID) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def get_by_username(db: Session, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


def delete(db: Session, user: User) -> None:
    """
    Delete a user.

    Uploads stay in the catalog with no owner; URLs, their clicks and API
    tokens go with the user.
    """
    with transaction(db):
        db.delete(user)


def dashboard_stats(db: Session, owner_id: UUID) -> DashboardStats:
    urls, clicks = (
        db.query(func.count(ShortenedURL.id), func.coalesce(func.sum(ShortenedURL.access_count), 0))
        .filter(ShortenedURL.user_id == owner_id, ShortenedURL.is_active.is_(True))
        .one()
    )
    files, storage = (
        db.query(func.count(UploadedItem.id), func.coalesce(func.sum(UploadedItem.file_size), 0))
        .filter(UploadedItem.user_id == owner_id)
        .one()
    )
    return DashboardStats(
        total_urls=urls or 0,
        total_clicks=int(clicks or 0),
        total_files=files or 0,
        total_storage=int(storage or 0),
    )
