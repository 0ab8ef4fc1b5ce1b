"""FastAPI dependency injection — database sessions and the record store."""
from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from docmigrate.core.settings import get_settings
from docmigrate.db.session import get_session_factory
from docmigrate.store.sqlalchemy_store import SqlAlchemyRecordStore


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_record_store(db: Session = Depends(get_db)) -> SqlAlchemyRecordStore:
    """Return a record store bound to the current DB session."""
    settings = get_settings()
    return SqlAlchemyRecordStore(
        db,
        acting_user_id=settings.acting_user_id,
        fetch_size=settings.scope_fetch_size,
    )
