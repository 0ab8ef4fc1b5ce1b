import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docmigrate.db.base import Base
from docmigrate.db.models import User
from docmigrate.store.sqlalchemy_store import SqlAlchemyRecordStore
from tests.factories import make_user


@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def admin(db_session: Session) -> User:
    """The acting principal the store defaults ownership to."""
    return make_user(db_session, "admin")


@pytest.fixture
def store(db_session: Session, admin: User) -> SqlAlchemyRecordStore:
    return SqlAlchemyRecordStore(db_session, acting_user_id=admin.id, fetch_size=3)


@pytest.fixture
def client(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """TestClient with get_db overridden to use the in-memory session."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")

    from docmigrate.core.settings import get_settings

    get_settings.cache_clear()

    from docmigrate.api.deps import get_db
    from docmigrate.api.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

    get_settings.cache_clear()
