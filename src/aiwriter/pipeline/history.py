"""Append-only generation history kept in the key-value store."""

from __future__ import annotations

import json
import logging
import threading

from aiwriter.models import HistoryEntry
from aiwriter.utils.storage import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "history"


class HistoryStore:
    def __init__(self, store: KeyValueStore, max_entries: int = 100) -> None:
        self._store = store
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def _load(self) -> list[dict]:
        raw = self._store.get(HISTORY_KEY) or "[]"
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("history_unreadable", extra={"length": len(raw)})
            return []
        return data if isinstance(data, list) else []

    def append(self, entry: HistoryEntry) -> None:
        """Store entry ahead of older ones, dropping the oldest past max_entries."""
        with self._lock:
            entries = [e for e in self._load() if e.get("id") != entry.id]
            entries.insert(0, entry.to_dict())
            self._store.put(
                HISTORY_KEY, json.dumps(entries[: self.max_entries], ensure_ascii=False)
            )

    def list(self) -> list[HistoryEntry]:
        """Entries, newest first."""
        with self._lock:
            return [HistoryEntry.from_dict(e) for e in self._load() if isinstance(e, dict)]
