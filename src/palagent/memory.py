"""
Persistent key/value memory behind the remember and recall tools.

Entries live in a single JSON file as {key: {"value", "timestamp"}}.
The file is rewritten whole on every change; it is small and written
rarely.
"""

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from palagent.primitives import PrimitiveError

logger = logging.getLogger(__name__)

ALL_KEYS = "all"


class MemoryStore:
    """JSON-file memory. A path of None keeps everything in process."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._entries: dict[str, dict[str, Any]] | None = None

    def _load(self) -> dict[str, dict[str, Any]]:
        if self._entries is not None:
            return self._entries
        entries: dict[str, dict[str, Any]] = {}
        if self.path is not None and self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            except (OSError, json.JSONDecodeError) as e:
                raise PrimitiveError(f"Could not read memory file {self.path}: {e}") from e
            if isinstance(data, dict):
                entries = {str(k): v for k, v in data.items() if isinstance(v, dict)}
        self._entries = entries
        return entries

    def _save(self, entries: dict[str, dict[str, Any]]) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            raise PrimitiveError(f"Could not write memory file {self.path}: {e}") from e

    def remember(self, key: str, value: str) -> dict[str, Any]:
        key = key.strip()
        if not key:
            raise PrimitiveError("Memory key must not be empty")
        if key.lower() == ALL_KEYS:
            raise PrimitiveError(f"'{ALL_KEYS}' is reserved and cannot be used as a key")
        with self._lock:
            entries = self._load()
            entries[key] = {
                "value": value,
                "timestamp": datetime.now(UTC).isoformat(),
            }
            self._save(entries)
        logger.info(f"Remembered '{key}'")
        return {"key": key, "message": f"Remembered: {key}"}

    def recall(self, key: str) -> Any:
        """
        Return the value stored under key, or every entry for "all".

        Raises PrimitiveError when nothing is stored under key.
        """
        key = key.strip()
        with self._lock:
            entries = self._load()
            if key.lower() == ALL_KEYS:
                return {k: v.get("value") for k, v in entries.items()}
            entry = entries.get(key)
        if entry is None:
            raise PrimitiveError(f"No memory found for key: {key}")
        return {"key": key, "value": entry.get("value"), "timestamp": entry.get("timestamp")}

    def forget(self, key: str) -> bool:
        with self._lock:
            entries = self._load()
            removed = entries.pop(key.strip(), None) is not None
            if removed:
                self._save(entries)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._load())
