from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from volaticus.core.config import logger
from volaticus.core.exceptions import CatalogError, DuplicateReference
from volaticus.db.base import utcnow
from volaticus.db.session import transaction, violates
from volaticus.models.upload import UploadedItem

TOP_MIME_TYPES = 5


@dataclass
class UploadStats:
    total_files: int = 0
    total_size: int = 0
    total_views: int = 0
    top_mime_types: List[tuple] = field(default_factory=list)


def create_with_reference(db: Session, item: UploadedItem, reference: str) -> UploadedItem:
    """
    Insert an uploaded item under ``reference``.

    The existence check and the insert share one transaction; the unique
    constraint on the reference column settles races between the two.

    Args:
        db: Database session
        item: Item to insert, without a reference
        reference: Public short reference

    Returns:
        The stored item

    Raises:
        DuplicateReference: If another item already uses the reference
        CatalogError: On any other database failure
    """
    item.reference = reference
    try:
        with transaction(db):
            taken = db.query(UploadedItem.id).filter(UploadedItem.reference == reference).first()
            if taken:
                raise DuplicateReference()
            db.add(item)
            db.flush()
    except IntegrityError as e:
        if violates(e, "reference"):
            raise DuplicateReference() from e
        logger.error(f"Failed to insert uploaded item {item.blob_key}: {e}")
        raise CatalogError() from e
    return item


def get_by_reference(db: Session, reference: str) -> Optional[UploadedItem]:
    return db.query(UploadedItem).filter(UploadedItem.reference == reference).first()


def get_by_blob_key(db: Session, blob_key: str) -> Optional[UploadedItem]:
    return db.query(UploadedItem).filter(UploadedItem.blob_key == blob_key).first()


def get_by_id(db: Session, item_id: UUID) -> Optional[UploadedItem]:
    return db.query(UploadedItem).filter(UploadedItem.id == item_id).first()


def increment_access(db: Session, item_id: UUID) -> bool:
    """
    Add one to the access counter and stamp the access time.

    The increment runs in SQL so concurrent calls never lose an update.
    """
    with transaction(db):
        updated = (
            db.query(UploadedItem)
            .filter(UploadedItem.id == item_id)
            .update(
                {
                    UploadedItem.access_count: UploadedItem.access_count + 1,
                    UploadedItem.last_accessed_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
    return updated > 0


def list_by_owner(db: Session, owner_id: UUID, limit: int = 20, offset: int = 0) -> List[UploadedItem]:
    return (
        db.query(UploadedItem)
        .filter(UploadedItem.user_id == owner_id)
        .order_by(UploadedItem.created_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def count_by_owner(db: Session, owner_id: UUID) -> int:
    return db.query(func.count(UploadedItem.id)).filter(UploadedItem.user_id == owner_id).scalar() or 0


def list_expired(db: Session, now: Optional[datetime] = None) -> List[UploadedItem]:
    now = now or utcnow()
    return db.query(UploadedItem).filter(UploadedItem.expires_at < now).all()


def list_all(db: Session) -> List[UploadedItem]:
    return db.query(UploadedItem).all()


def delete(db: Session, item_id: UUID) -> bool:
    with transaction(db):
        deleted = (
            db.query(UploadedItem)
            .filter(UploadedItem.id == item_id)
            .delete(synchronize_session="fetch")
        )
    return deleted > 0


def delete_by_blob_key(db: Session, blob_key: str) -> bool:
    with transaction(db):
        deleted = (
            db.query(UploadedItem)
            .filter(UploadedItem.blob_key == blob_key)
            .delete(synchronize_session="fetch")
        )
    return deleted > 0


def stats(db: Session, owner_id: UUID) -> UploadStats:
    """
    Aggregate upload totals for one owner.

    Returns:
        File count, stored bytes, total views and the five most common MIME
        types with their counts
    """
    count, size, views = (
        db.query(
            func.count(UploadedItem.id),
            func.coalesce(func.sum(UploadedItem.file_size), 0),
            func.coalesce(func.sum(UploadedItem.access_count), 0),
        )
        .filter(UploadedItem.user_id == owner_id)
        .one()
    )

    mime_count = func.count(UploadedItem.id).label("count")
    top_types = (
        db.query(UploadedItem.mime_type, mime_count)
        .filter(UploadedItem.user_id == owner_id)
        .group_by(UploadedItem.mime_type)
        .order_by(mime_count.desc(), UploadedItem.mime_type)
        .limit(TOP_MIME_TYPES)
        .all()
    )

    return UploadStats(
        total_files=count or 0,
        total_size=int(size or 0),
        total_views=int(views or 0),
        top_mime_types=[(mime, n) for mime, n in top_types],
    )
