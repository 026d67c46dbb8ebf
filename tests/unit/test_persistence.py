"""
Unit tests for smartwake.core.state.persistence.

These tests validate the JSON file backend:
- values written under one key do not clobber other keys
- remove drops only the given key
- a corrupt document is reported as ValueError on load and the store starts empty
"""

from __future__ import annotations

from pathlib import Path

import pytest

from smartwake.core.state.alarm_store import AlarmStore
from smartwake.core.state.persistence import JsonFileStorage, MemoryStorage


def test_json_file_storage_keys_are_independent(tmp_path: Path) -> None:
    storage = JsonFileStorage(tmp_path / "nested" / "store.json")

    storage.save("a", [1, 2])
    storage.save("b", {"x": "y"})
    storage.remove("a")

    assert storage.load("a") is None
    assert storage.load("b") == {"x": "y"}
    assert JsonFileStorage(storage.path).load("b") == {"x": "y"}


def test_json_file_storage_corrupt_document_raises(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError):
        JsonFileStorage(path).load("alarms_v3")


def test_store_recovers_from_corrupt_file(tmp_path: Path, make_alarm) -> None:
    path = tmp_path / "store.json"
    path.write_text("[]", encoding="utf-8")

    store = AlarmStore(storage=JsonFileStorage(path))
    assert len(store) == 0

    store.add(make_alarm())
    assert len(AlarmStore(storage=JsonFileStorage(path))) == 1


def test_memory_storage_returns_json_types() -> None:
    storage = MemoryStorage()
    storage.save("k", {"t": (1, 2)})
    assert storage.load("k") == {"t": [1, 2]}
