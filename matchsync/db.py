# matchsync/db.py
"""Database engine and session utilities.

The document store runs on top of a single SQLAlchemy table; this module
owns engine creation and the session factory used by the store.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

Base = declarative_base()


def make_engine(url: str):
    if url.startswith("sqlite"):
        # sessions are handed to worker threads during fan-out
        return create_engine(url, connect_args={"check_same_thread": False})
    # tuned pool settings for cloud DB
    return create_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True
    )


engine = make_engine(config.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
