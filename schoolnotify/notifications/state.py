"""JSON blob state shared by the pipeline components."""

import json
import logging
from typing import Any, Callable, Generic, TypeVar

from schoolnotify.db.store import KeyValueStore
from schoolnotify.notifications.errors import StorageCorruptionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def decode_blob(key: str, raw: bytes, expected: type) -> Any:
    """Decode a stored blob, raising StorageCorruptionError on bad data."""
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StorageCorruptionError(key, str(exc)) from exc
    if not isinstance(value, expected):
        raise StorageCorruptionError(key, f"expected {expected.__name__}, got {type(value).__name__}")
    return value


class BlobState(Generic[T]):
    """Load/save one JSON document under a single key.

    Missing or unreadable blobs load as ``empty()``; the anomaly is
    logged and the next save overwrites the bad data.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        expected: type,
        empty: Callable[[], T],
    ):
        self.store = store
        self.key = key
        self._expected = expected
        self._empty = empty

    def load(self) -> T:
        try:
            raw = self.store.get(self.key)
        except Exception:
            logger.exception("Failed to read state for key %s, treating as empty", self.key)
            return self._empty()

        if raw is None:
            return self._empty()

        try:
            return decode_blob(self.key, raw, self._expected)
        except StorageCorruptionError as exc:
            logger.error("%s, treating as empty", exc.message)
            return self._empty()

    def save(self, value: T) -> None:
        self.store.set(self.key, json.dumps(value, default=str).encode("utf-8"))
