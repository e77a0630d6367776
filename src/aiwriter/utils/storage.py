"""Key-value persistence and file writing collaborators.

The ledger and history store only need get/put of strings; MemoryStore
backs tests, JsonFileStore keeps everything in a single JSON file.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...


class FileWriter(Protocol):
    def write(self, data: bytes, file_name: str) -> str:
        """Persist data and return the path it was written to."""
        ...


class MemoryStore:
    """In-process store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class JsonFileStore:
    """String values persisted in one UTF-8 JSON object on disk.

    Writes go to a sibling temp file that replaces the original, so a crash
    mid-write never leaves a truncated store.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("store_unreadable", extra={"path": str(self.path), "error": str(e)})
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)


class LocalFileWriter:
    """Writes artifacts under an output directory."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def write(self, data: bytes, file_name: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / Path(file_name).name
        path.write_bytes(data)
        return str(path.absolute())
