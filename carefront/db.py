# carefront/db.py
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from carefront.config import get_settings


class Base(DeclarativeBase):
    """
    Base class for ORM models.
    """
    pass


def make_engine(database_url: str) -> Engine:
    kwargs = {"echo": False, "future": True}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection so every session sees the same in-memory DB
        kwargs["connect_args"] = {"check_same_thread": False}
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return make_engine(get_settings().database_url)


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    return make_sessionmaker(get_engine())


def init_db(engine: Engine | None = None) -> None:
    """
    Create all tables. Call this once at startup.
    """
    # Registers the tables on Base.metadata
    from carefront import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def db_session(factory: sessionmaker):
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
