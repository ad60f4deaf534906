"""Key-value persistence contract and its SQLModel implementation."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.errors import PersistenceFailure
from models.record import StoredRecord
from utils.datetime_utils import utc_now


logger = logging.getLogger("taskmaster.storage")


class KeyValueStore(Protocol):
    """Minimal durable associative store the engine persists through."""

    def get_all(self, store_name: str) -> List[Dict[str, Any]]: ...

    def get(self, store_name: str, key: str) -> Optional[Dict[str, Any]]: ...

    def put(self, store_name: str, record: Dict[str, Any]) -> None: ...

    def clear(self, store_name: str) -> None: ...

    def replace_all(self, store_name: str, records: Iterable[Dict[str, Any]]) -> None: ...


def _serialise(record: Dict[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, sort_keys=True)


def _deserialise(payload: Optional[str]) -> Optional[Dict[str, Any]]:
    if not payload:
        return None
    try:
        data = json.loads(payload)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass
    return None


def _record_key(record: Dict[str, Any]) -> str:
    key = record.get("id")
    if key is None or key == "":
        raise PersistenceFailure("Record has no 'id' key")
    return str(key)


class SQLModelKeyValueStore:
    """:class:`KeyValueStore` backed by the ``records`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_all(self, store_name: str) -> List[Dict[str, Any]]:
        try:
            with self._session_factory() as session:
                stmt = select(StoredRecord).where(StoredRecord.store == store_name)
                rows = list(session.exec(stmt))
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Reading '{store_name}' failed: {exc}") from exc

        result: List[Dict[str, Any]] = []
        for row in rows:
            data = _deserialise(row.payload)
            if data is None:
                logger.warning("Skipping unreadable record %s/%s", store_name, row.key)
                continue
            result.append(data)
        return result

    def get(self, store_name: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            with self._session_factory() as session:
                row = session.get(StoredRecord, (store_name, key))
                return _deserialise(row.payload if row else None)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Reading '{store_name}/{key}' failed: {exc}") from exc

    def put(self, store_name: str, record: Dict[str, Any]) -> None:
        key = _record_key(record)
        try:
            with self._session_factory() as session:
                row = session.get(StoredRecord, (store_name, key))
                if row is None:
                    row = StoredRecord(store=store_name, key=key, payload=_serialise(record))
                else:
                    row.payload = _serialise(record)
                    row.updated_at = utc_now()
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Writing '{store_name}/{key}' failed: {exc}") from exc

    def clear(self, store_name: str) -> None:
        try:
            with self._session_factory() as session:
                session.exec(delete(StoredRecord).where(StoredRecord.store == store_name))
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Clearing '{store_name}' failed: {exc}") from exc

    def replace_all(self, store_name: str, records: Iterable[Dict[str, Any]]) -> None:
        """Clear ``store_name`` and repopulate it in a single transaction."""
        rows = [
            StoredRecord(store=store_name, key=_record_key(record), payload=_serialise(record))
            for record in records
        ]
        try:
            with self._session_factory() as session:
                session.exec(delete(StoredRecord).where(StoredRecord.store == store_name))
                for row in rows:
                    session.merge(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Writing '{store_name}' failed: {exc}") from exc
        logger.debug("Stored %d record(s) in %s", len(rows), store_name)


__all__ = ["KeyValueStore", "SQLModelKeyValueStore"]
