"""
Durable key-value storage for cache entries and session state.

Values must be JSON-serialisable. `SqlKeyValueStore` is backed by
SQLAlchemy/SQLite; `InMemoryKeyValueStore` is a drop-in fake for tests.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from repositories.models import KeyValueEntryORM


class KeyValueStore(ABC):
    """Minimal get/set interface over string keys."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class SqlKeyValueStore(KeyValueStore):
    """Key-value entries stored in the `kv_entries` table."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from db import SessionLocal, init_db

            init_db()
            session_factory = SessionLocal
        self._session_factory = session_factory

    def get(self, key: str, default: Any = None) -> Any:
        with self._session_factory() as session:
            orm = session.get(KeyValueEntryORM, key)
            if orm is None:
                return default
            return orm.value

    def set(self, key: str, value: Any) -> None:
        with self._session_factory() as session:
            orm = session.get(KeyValueEntryORM, key)
            if orm is None:
                orm = KeyValueEntryORM(key=key)
            orm.value = value
            orm.updated_at = datetime.utcnow()
            session.add(orm)
            session.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            orm = session.get(KeyValueEntryORM, key)
            if orm:
                session.delete(orm)
                session.commit()


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Values are JSON round-tripped like the SQL store."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
