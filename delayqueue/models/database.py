# delayqueue/models/database.py
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from ..config import settings

Base = declarative_base()


def create_db_engine(url: Optional[str] = None) -> Engine:
    """Create an engine configured for the database type behind the URL"""
    url = url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=settings.SQL_ECHO,
            connect_args={"check_same_thread": False}  # Dispatcher threads share the engine
        )

    # PostgreSQL or other databases
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.SQL_ECHO
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    """Sessions keep loaded records usable after commit, since tasks leave the session"""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


def init_db(bind: Engine) -> None:
    """Create missing tables (development and tests; production uses alembic)"""
    Base.metadata.create_all(bind=bind)


engine = create_db_engine()

SessionLocal = make_session_factory(engine)
