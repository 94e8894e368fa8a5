from datetime import datetime
from typing import Any, Dict
from sqlalchemy import Text
from sqlmodel import Field, SQLModel, Column, JSON


class HistoryRecord(SQLModel, table=True):
    """
    One persisted analysis in the user's history.

    Keyed by the caller-generated history id; ``data`` holds the full
    analysis result in wire format.
    """
    __tablename__ = "history_record"

    id: str = Field(primary_key=True)
    timestamp: int = Field(index=True)  # result creation time, epoch ms
    result_id: str = Field(index=True)
    language: str
    file_type: str
    preview_url: str = Field(sa_column=Column(Text))
    data: Dict[str, Any] = Field(default={}, sa_column=Column(JSON))
    saved_at: datetime = Field(default_factory=datetime.utcnow)
