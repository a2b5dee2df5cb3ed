"""
Tests for the persistent key/value memory.
"""

import json
from pathlib import Path

import pytest

from palagent.memory import MemoryStore
from palagent.primitives import PrimitiveError


class TestMemoryStore:
    def test_remember_and_recall(self) -> None:
        store = MemoryStore(None)

        assert store.remember("color", "blue") == {"key": "color", "message": "Remembered: color"}
        recalled = store.recall("color")

        assert recalled["value"] == "blue"
        assert recalled["timestamp"]

    def test_recall_all(self) -> None:
        store = MemoryStore(None)
        store.remember("a", "1")
        store.remember("b", "2")

        assert store.recall("all") == {"a": "1", "b": "2"}

    def test_missing_key(self) -> None:
        with pytest.raises(PrimitiveError, match="No memory found for key: nope"):
            MemoryStore(None).recall("nope")

    def test_reserved_and_empty_keys(self) -> None:
        store = MemoryStore(None)

        with pytest.raises(PrimitiveError):
            store.remember("all", "x")
        with pytest.raises(PrimitiveError):
            store.remember("  ", "x")

    def test_overwrite(self) -> None:
        store = MemoryStore(None)
        store.remember("color", "blue")
        store.remember("color", "green")

        assert store.recall("color")["value"] == "green"
        assert len(store) == 1

    def test_forget(self) -> None:
        store = MemoryStore(None)
        store.remember("color", "blue")

        assert store.forget("color")
        assert not store.forget("color")
        assert len(store) == 0


class TestPersistence:
    def test_survives_a_new_store(self, tmp_path: Path) -> None:
        path = tmp_path / "memory" / "memory.json"
        MemoryStore(path).remember("name", "Ada")

        assert MemoryStore(path).recall("name")["value"] == "Ada"

    def test_file_format(self, tmp_path: Path) -> None:
        path = tmp_path / "memory.json"
        MemoryStore(path).remember("name", "Ada")

        data = json.loads(path.read_text())
        assert data["name"]["value"] == "Ada"
        assert "timestamp" in data["name"]

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "memory.json"
        path.write_text("{not json")

        with pytest.raises(PrimitiveError, match="Could not read memory file"):
            MemoryStore(path).recall("name")
