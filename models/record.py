# taskmaster/models/record.py
from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel

from utils.datetime_utils import utc_now


class StoredRecord(SQLModel, table=True):
    """One JSON record of a named key-value store."""

    __tablename__ = "records"

    store: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    payload: str
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["StoredRecord"]
