"""Persistence package for the notification pipeline."""

from schoolnotify.db.base import Base
from schoolnotify.db.engine import create_state_engine
from schoolnotify.db.models import NotificationState
from schoolnotify.db.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore

__all__ = [
    "Base",
    "create_state_engine",
    "NotificationState",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "SqlKeyValueStore",
]
