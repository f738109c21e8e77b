# src/weather_api/db.py
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from src.weather_api.config import get_settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool and driver options for the configured backend."""
    if make_url(database_url).get_backend_name() == "sqlite":
        # sqlite has no server pool and rejects connect_timeout
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {"connect_timeout": 3},
    }


DATABASE_URL = get_settings().database_url

engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    """Provide a database session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_tables_exist() -> None:
    """Create all tables if they don't exist (safe to call repeatedly)."""
    Base.metadata.create_all(bind=engine)
