from typing import Optional

from sqlmodel import create_engine, SQLModel
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool

from backend.core.config import get_settings


def get_engine(db_url: Optional[str] = None) -> Engine:
    """Create database engine with appropriate settings for SQLite or PostgreSQL."""
    db_url = db_url or get_settings().database.url

    if "sqlite" in db_url:
        # SQLite: history writes run in worker threads
        return create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False}
        )
    else:
        # PostgreSQL: a single session writes, a small pool is enough
        return create_engine(
            db_url,
            echo=False,
            poolclass=QueuePool,
            pool_size=2,
            max_overflow=2,
            pool_timeout=10,
            pool_recycle=1800,     # Recycle connections after 30 min
            pool_pre_ping=True     # Verify connection before use
        )


def create_db_and_tables(engine: Engine) -> None:
    # Registers HistoryRecord on SQLModel.metadata
    import backend.models.db  # noqa: F401

    SQLModel.metadata.create_all(engine)
