"""
Plain-text notes behind the save_note, read_note and list_notes tools.

Each note is one .txt file in the notes directory. Names are sanitized
to letters, digits, "_" and "-" so a note can never escape the
directory.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Any

from palagent.primitives import ArgumentError, PrimitiveError

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".txt"


def safe_note_name(name: str) -> str:
    stem = name.strip()
    if stem.lower().endswith(NOTE_SUFFIX):
        stem = stem[: -len(NOTE_SUFFIX)]
    stem = re.sub(r"[^a-zA-Z0-9_-]", "_", stem)
    if not stem.strip("_"):
        raise ArgumentError(f"Invalid note name: {name!r}")
    return stem


class NoteStore:
    """Notes on disk. A directory of None keeps notes in process."""

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory
        self._lock = threading.Lock()
        self._notes: dict[str, str] = {}

    def _path(self, stem: str) -> Path:
        assert self.directory is not None
        return self.directory / f"{stem}{NOTE_SUFFIX}"

    def save(self, name: str, content: str) -> dict[str, Any]:
        stem = safe_note_name(name)
        with self._lock:
            if self.directory is None:
                self._notes[stem] = content
            else:
                try:
                    self.directory.mkdir(parents=True, exist_ok=True)
                    self._path(stem).write_text(content, encoding="utf-8")
                except OSError as e:
                    raise PrimitiveError(f"Could not save note {stem}: {e}") from e
        logger.info(f"Saved note '{stem}'")
        return {"filename": stem + NOTE_SUFFIX, "message": f'Saved note "{name}"'}

    def read(self, name: str) -> dict[str, Any]:
        stem = safe_note_name(name)
        with self._lock:
            if self.directory is None:
                content = self._notes.get(stem)
            else:
                path = self._path(stem)
                try:
                    content = path.read_text(encoding="utf-8") if path.exists() else None
                except OSError as e:
                    raise PrimitiveError(f"Could not read note {stem}: {e}") from e
        if content is None:
            raise PrimitiveError(f'Note "{name}" not found')
        return {"filename": stem + NOTE_SUFFIX, "content": content}

    def list_notes(self) -> dict[str, Any]:
        with self._lock:
            if self.directory is None:
                names = sorted(self._notes)
            elif not self.directory.is_dir():
                names = []
            else:
                names = sorted(p.stem for p in self.directory.glob(f"*{NOTE_SUFFIX}") if p.is_file())
        result: dict[str, Any] = {"notes": names, "count": len(names)}
        if not names:
            result["message"] = "No notes saved yet"
        return result
