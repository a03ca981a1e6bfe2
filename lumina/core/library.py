"""Library store: the user's reading items, newest first."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from lumina.core.models import ReadingItem, demo_items
from lumina.core.storage import LIBRARY_KEY

if TYPE_CHECKING:
    from lumina.core.storage import DB

logger = logging.getLogger(__name__)


class LibraryStore:
    """Durable list of reading items. Thread-safe.

    Every mutation rewrites the whole snapshot before the in-memory list is
    swapped, so a failed write leaves the store unchanged.
    """

    def __init__(self, db: DB, items: list[ReadingItem] | None = None) -> None:
        self._db = db
        self._items: list[ReadingItem] = list(items or [])
        self._lock = threading.Lock()

    @classmethod
    def load_or_default(cls, db: DB) -> LibraryStore:
        """Read the persisted library, seeding the demo entries if none exists."""
        store = cls(db)
        store.reload()
        return store

    def reload(self) -> None:
        """Drop in-memory state and re-read the persisted snapshot.

        A missing snapshot is seeded with the demo entries, which are written
        immediately.
        """
        raw = self._db.get_snapshot(LIBRARY_KEY)
        with self._lock:
            if raw is not None:
                self._items = [ReadingItem.from_dict(row) for row in raw]
                return
            self._persist(demo_items())
        logger.info("No library snapshot found, seeded demo items")

    def _persist(self, items: list[ReadingItem]) -> None:
        """Write `items` and make them current. Must be called within lock."""
        self._db.set_snapshot(LIBRARY_KEY, [i.to_dict() for i in items])
        self._items = items

    def insert(self, item: ReadingItem) -> None:
        """Prepend `item` so the list stays newest-first."""
        with self._lock:
            self._persist([item, *self._items])
        logger.info(f"Added '{item.title}' ({item.id}) to library")

    def remove(self, item_id: str) -> bool:
        """Delete the entry with `item_id`. No-op if absent."""
        with self._lock:
            remaining = [i for i in self._items if i.id != item_id]
            if len(remaining) == len(self._items):
                return False
            self._persist(remaining)
        logger.info(f"Removed {item_id} from library")
        return True

    def get(self, item_id: str) -> ReadingItem | None:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
            return None

    def list(self) -> list[ReadingItem]:
        """All entries, newest first."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
