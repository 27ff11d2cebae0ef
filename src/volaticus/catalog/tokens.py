from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from volaticus.core.config import logger
from volaticus.core.exceptions import CatalogError, Conflict
from volaticus.db.base import utcnow
from volaticus.db.session import transaction, violates
from volaticus.models.token import APIToken


def create(db: Session, token: APIToken) -> APIToken:
    try:
        with transaction(db):
            db.add(token)
            db.flush()
    except IntegrityError as e:
        if violates(e, "token"):
            raise Conflict("Token already exists") from e
        logger.error(f"Failed to insert API token {token.name}: {e}")
        raise CatalogError() from e
    return token


def get_by_token(db: Session, token: str) -> Optional[APIToken]:
    return db.query(APIToken).filter(APIToken.token == token).first()


def get_by_id(db: Session, token_id: UUID) -> Optional[APIToken]:
    return db.query(APIToken).filter(APIToken.id == token_id).first()


def exists(db: Session, token: str) -> bool:
    return db.query(APIToken.id).filter(APIToken.token == token).first() is not None


def list_by_owner(db: Session, owner_id: UUID) -> List[APIToken]:
    return (
        db.query(APIToken)
        .filter(APIToken.user_id == owner_id)
        .order_by(APIToken.created_at.desc())
        .all()
    )


def revoke(db: Session, owner_id: UUID, token_id: UUID) -> bool:
    with transaction(db):
        updated = (
            db.query(APIToken)
            .filter(
                APIToken.id == token_id,
                APIToken.user_id == owner_id,
                APIToken.revoked_at.is_(None),
            )
            .update(
                {APIToken.is_active: False, APIToken.revoked_at: utcnow()},
                synchronize_session="fetch",
            )
        )
    return updated > 0


def update_last_used(db: Session, token_id: UUID) -> None:
    with transaction(db):
        db.query(APIToken).filter(APIToken.id == token_id).update(
            {APIToken.last_used_at: utcnow()}, synchronize_session="fetch"
        )


def delete(db: Session, owner_id: UUID, token_id: UUID) -> bool:
    with transaction(db):
        deleted = (
            db.query(APIToken)
            .filter(APIToken.id == token_id, APIToken.user_id == owner_id)
            .delete(synchronize_session="fetch")
        )
    return deleted > 0
