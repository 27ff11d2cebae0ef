from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from volaticus.core.config import settings, logger
from volaticus.core.exceptions import CatalogError
from volaticus.db.base import Base


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        db_engine = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
        return db_engine
    return create_engine(url, pool_pre_ping=True)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind: Engine = engine) -> None:
    # models must be imported so their tables are registered on Base.metadata
    import volaticus.models  # noqa: F401

    Base.metadata.create_all(bind=bind)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def violates(error: IntegrityError, *names: str) -> bool:
    """Whether a unique/foreign key violation mentions one of ``names``."""
    message = str(getattr(error, "orig", error)).lower()
    return any(name in message for name in names)


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a unit of work on ``db`` and commit it.

    Any exception rolls the session back and propagates. Integrity errors are
    re-raised untouched so callers can map unique violations to domain
    errors; other database failures become CatalogError.
    """
    try:
        yield db
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Catalog transaction failed: {e}", exc_info=True)
        raise CatalogError() from e
    except BaseException:
        db.rollback()
        raise
