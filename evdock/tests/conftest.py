import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from evdock.models.database import Base
from evdock.services.storage_service import StorageService

# File-backed SQLite so several sessions can share the same data
TEST_DATABASE_URL = "sqlite:///./test_evdock.db"


@pytest.fixture
def test_engine():
    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(test_db):
    return StorageService(test_db)
