from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol


class KeyValueStorage(Protocol):
    """
    Key/value persistence backend used by the alarm store.

    Values are JSON-compatible Python objects. Implementations only need to be
    safe for the store's usage: one writer at a time under the store lock.
    """

    def load(self, key: str) -> Optional[Any]:
        ...

    def save(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


@dataclass
class MemoryStorage:
    """Volatile storage; used by tests and when no storage path is configured."""

    data: Dict[str, Any] = field(default_factory=dict)

    def load(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def save(self, key: str, value: Any) -> None:
        # Round-trip through JSON so callers see the same types as on disk.
        self.data[key] = json.loads(json.dumps(value))

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStorage:
    """
    Storage backed by a single JSON document mapping keys to values.

    Writes go to a temporary file that replaces the document atomically.

    Parameters
    ----------
    path
        Location of the JSON document. Parent directories are created on save.

    Raises
    ------
    ValueError
        From :meth:`load` when the document exists but is not valid JSON.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} must contain a JSON object at the root")
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self._path)

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read_all().get(key)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            try:
                data = self._read_all()
            except ValueError:
                data = {}
            data[key] = value
            self._write_all(data)

    def remove(self, key: str) -> None:
        with self._lock:
            try:
                data = self._read_all()
            except ValueError:
                data = {}
            data.pop(key, None)
            self._write_all(data)
