"""
Persistent history backends.

- SqlHistoryBackend: SQLModel table keyed by history id (SQLite by default)
- RedisHistoryBackend: one Redis hash, field = history id, value = JSON

Both implement whole-list replace and raise HistoryPersistenceError on
storage failures.
"""

import logging
from typing import List

from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, delete, select

from backend.models.db import HistoryRecord
from pipeline.analysis.errors import HistoryPersistenceError
from pipeline.analysis.history import HistoryBackend, MemoryHistoryBackend
from pipeline.analysis.schema import AnalysisResult, HistoryItem

logger = logging.getLogger(__name__)


class SqlHistoryBackend:
    """History stored in the ``history_record`` table."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def read_all(self) -> List[HistoryItem]:
        try:
            with Session(self.engine) as session:
                records = session.exec(select(HistoryRecord)).all()
        except SQLAlchemyError as e:
            raise HistoryPersistenceError(f"Failed to read history: {e}") from e

        items = []
        for record in records:
            try:
                items.append(HistoryItem(
                    id=record.id,
                    data=AnalysisResult.model_validate(record.data),
                    preview_url=record.preview_url,
                    file_type=record.file_type,
                ))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable history record {record.id}: {e}")
        return items

    def write_all(self, items: List[HistoryItem]) -> None:
        try:
            with Session(self.engine) as session:
                session.exec(delete(HistoryRecord))
                for item in items:
                    session.add(HistoryRecord(
                        id=item.id,
                        timestamp=item.data.timestamp,
                        result_id=item.data.result_id,
                        language=item.data.language,
                        file_type=item.file_type,
                        preview_url=item.preview_url,
                        data=item.data.model_dump(by_alias=True, mode="json"),
                    ))
                session.commit()
        except SQLAlchemyError as e:
            raise HistoryPersistenceError(f"Failed to write history: {e}") from e


class RedisHistoryBackend:
    """History stored in a single Redis hash."""

    def __init__(self, redis_client, key: str = "medidecode:history"):
        self.redis = redis_client
        self.key = key

    def read_all(self) -> List[HistoryItem]:
        try:
            raw = self.redis.hgetall(self.key)
        except RedisError as e:
            raise HistoryPersistenceError(f"Failed to read history: {e}") from e

        items = []
        for field, value in raw.items():
            try:
                items.append(HistoryItem.model_validate_json(value))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable history entry {field!r}: {e}")
        return items

    def write_all(self, items: List[HistoryItem]) -> None:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.delete(self.key)
            if items:
                pipe.hset(self.key, mapping={
                    item.id: item.model_dump_json(by_alias=True) for item in items
                })
            pipe.execute()
        except RedisError as e:
            raise HistoryPersistenceError(f"Failed to write history: {e}") from e


def build_history_backend(settings) -> HistoryBackend:
    """Backend selected by ``history.backend`` (sqlite, redis, memory)."""
    kind = settings.history.backend.lower()

    if kind == "memory":
        return MemoryHistoryBackend()

    if kind == "redis":
        import redis
        client = redis.Redis.from_url(settings.redis.url)
        logger.info(f"History backend: redis ({settings.redis.url})")
        return RedisHistoryBackend(client, key=settings.redis.history_key)

    if kind in ("sqlite", "sql", "database"):
        from backend.core.database import create_db_and_tables, get_engine
        engine = get_engine(settings.database.url)
        create_db_and_tables(engine)
        logger.info(f"History backend: database ({settings.database.url})")
        return SqlHistoryBackend(engine)

    raise ValueError(f"Unknown history backend '{settings.history.backend}'")
