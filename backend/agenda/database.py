import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import PersistenceError

logger = logging.getLogger(__name__)

_database_url = settings.resolved_database_url
_is_sqlite = _database_url.startswith("sqlite")

# check_same_thread=False: the SQLite connection is shared by FastAPI worker threads
engine = create_engine(
    _database_url,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
)


def enable_sqlite_fk(dbapi_connection, _):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


if _is_sqlite:
    event.listen(engine, "connect", enable_sqlite_fk)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Run several writes as one unit: commit at the end, roll back on any error.

    Storage failures surface as PersistenceError; domain errors raised
    inside the block propagate unchanged after the rollback.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Transaction failed, rolled back")
        raise PersistenceError("Storage write failed") from exc
    except Exception:
        db.rollback()
        raise


def commit_or_raise(db: Session) -> None:
    """Commit the session; roll back and raise PersistenceError on failure."""
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Commit failed, transaction rolled back")
        raise PersistenceError("Storage write failed") from exc
