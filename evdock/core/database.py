from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from evdock.core.config import DATABASE_URL


def _connect_args(url: str) -> dict:
    # SQLite connections are shared between the event loop and worker threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Database dependency for FastAPI"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
