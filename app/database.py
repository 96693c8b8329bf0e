"""
Database engine and session for Drive connections and OAuth states.
DATABASE_URL selects SQLite (dev, tests) or Postgres.

get_db is the request-scoped session dependency for the drive-oauth and
drive-api routers. init_db creates the two tables where migrations are not run.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config import DATABASE_URL

logger = logging.getLogger(__name__)

# SQLite connections are shared across FastAPI's threadpool
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine)

Base = declarative_base()


def init_db() -> None:
    """Create drive_connections and oauth_states if they do not exist."""
    import models  # noqa: F401  registers the tables on Base.metadata

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s)", engine.dialect.name)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
