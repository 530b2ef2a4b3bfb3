"""Durable key-value stores for pipeline state.

Every component serializes its full state to one blob per logical key
and rewrites it on each mutation. Two backends are provided: an
in-process dict (tests, single-run scripts) and a SQLAlchemy table.
"""

import logging
import threading
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from schoolnotify.db.base import Base
from schoolnotify.db.models import NotificationState

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal durable store contract."""

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...


class InMemoryKeyValueStore:
    """Dict-backed store. State is lost when the process exits."""

    def __init__(self, initial: Optional[dict[str, bytes]] = None):
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


class SqlKeyValueStore:
    """Store backed by the ``notification_state`` table."""

    def __init__(self, engine: Engine, create_tables: bool = True):
        self._engine = engine
        if create_tables:
            Base.metadata.create_all(engine, tables=[NotificationState.__table__])

    def get(self, key: str) -> Optional[bytes]:
        with Session(self._engine) as session:
            row = session.get(NotificationState, key)
            return bytes(row.value) if row is not None else None

    def set(self, key: str, value: bytes) -> None:
        with Session(self._engine) as session, session.begin():
            row = session.get(NotificationState, key)
            if row is None:
                session.add(NotificationState(key=key, value=value))
            else:
                row.value = value
        logger.debug("Persisted %d bytes for key %s", len(value), key)

    def delete(self, key: str) -> bool:
        with Session(self._engine) as session, session.begin():
            row = session.get(NotificationState, key)
            if row is None:
                return False
            session.delete(row)
            return True

    def keys(self) -> list[str]:
        with Session(self._engine) as session:
            return list(session.scalars(select(NotificationState.key).order_by(NotificationState.key)))
