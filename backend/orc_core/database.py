from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orc.db")


def build_engine(url: str):
    """Create an engine with the connection arguments the core relies on."""

    # purpose: keep sqlite writers waiting on the busy timeout instead of failing fast
    # inputs: SQLAlchemy database URL
    # outputs: configured Engine shared by sessions and the identifier allocator
    # status: active
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    else:
        connect_args = {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope():
    """Request-scoped session for callers outside a dependency injector."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
