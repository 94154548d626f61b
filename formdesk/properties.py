"""
Persisted key/value properties for the submission store.

Holds the cache version and auto-increment counters. Both implementations
return plain strings; callers parse what they need.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class PropertyStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryPropertyStore:
    """Process-local properties. Used by tests and the in-memory workbook."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)


class JsonPropertyStore:
    """Properties persisted as one JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable properties file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._load().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = str(value)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            tmp.replace(self.path)


def next_counter(properties: PropertyStore, key: str) -> int:
    """Increment and persist a named counter, returning the new value."""
    raw = properties.get(key)
    try:
        current = int(raw) if raw else 0
    except ValueError:
        current = 0
    value = current + 1
    properties.set(key, str(value))
    return value
