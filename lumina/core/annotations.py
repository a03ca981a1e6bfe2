"""Annotation store: highlights keyed by owning reading item."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from lumina.core.models import Highlight
from lumina.core.storage import HIGHLIGHTS_KEY

if TYPE_CHECKING:
    from lumina.core.storage import DB

logger = logging.getLogger(__name__)


class AnnotationStore:
    """Durable list of highlights in creation order. Thread-safe."""

    def __init__(self, db: DB, highlights: list[Highlight] | None = None) -> None:
        self._db = db
        self._highlights: list[Highlight] = list(highlights or [])
        self._lock = threading.Lock()

    @classmethod
    def load_or_default(cls, db: DB) -> AnnotationStore:
        raw = db.get_snapshot(HIGHLIGHTS_KEY)
        return cls(db, [Highlight.from_dict(row) for row in raw or []])

    def reload(self) -> None:
        raw = self._db.get_snapshot(HIGHLIGHTS_KEY)
        with self._lock:
            self._highlights = [Highlight.from_dict(row) for row in raw or []]

    def _persist(self, highlights: list[Highlight]) -> None:
        """Must be called within lock."""
        self._db.set_snapshot(HIGHLIGHTS_KEY, [h.to_dict() for h in highlights])
        self._highlights = highlights

    def add(self, highlight: Highlight) -> None:
        with self._lock:
            self._persist([*self._highlights, highlight])

    def remove(self, highlight_id: str) -> bool:
        with self._lock:
            remaining = [h for h in self._highlights if h.id != highlight_id]
            if len(remaining) == len(self._highlights):
                return False
            self._persist(remaining)
            return True

    def remove_for_item(self, item_id: str) -> int:
        """Drop every highlight owned by `item_id` in a single write.

        Returns the number of highlights removed.
        """
        with self._lock:
            remaining = [h for h in self._highlights if h.item_id != item_id]
            removed = len(self._highlights) - len(remaining)
            if removed:
                self._persist(remaining)
        if removed:
            logger.info(f"Removed {removed} highlight(s) of {item_id}")
        return removed

    def get(self, highlight_id: str) -> Highlight | None:
        with self._lock:
            for h in self._highlights:
                if h.id == highlight_id:
                    return h
            return None

    def list_for_item(self, item_id: str) -> list[Highlight]:
        """Highlights of one item in insertion order."""
        with self._lock:
            return [h for h in self._highlights if h.item_id == item_id]

    def list(self) -> list[Highlight]:
        with self._lock:
            return list(self._highlights)
