"""Engine, session factory and declarative base shared by the account tables."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import load_settings


def build_engine(url: str, **options) -> Engine:
    """
    Create an engine for `url`.

    SQLite connections are shared with FastAPI's worker threads, so the
    same-thread check is disabled. Other backends get a small pre-pinged pool.
    """
    if url.startswith("sqlite"):
        options.setdefault("connect_args", {"check_same_thread": False})
    else:
        options.setdefault("pool_pre_ping", True)
        options.setdefault("pool_size", 5)
        options.setdefault("max_overflow", 10)
    return create_engine(url, **options)


engine = build_engine(load_settings().database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session; closed when the request finishes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
