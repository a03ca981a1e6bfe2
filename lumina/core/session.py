"""Session context owning the stores, the selection tracker and the ingestion controller."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lumina.core.annotations import AnnotationStore
from lumina.core.explain import explain_selection
from lumina.core.ingest_pipeline import IngestionController
from lumina.core.library import LibraryStore
from lumina.core.models import Highlight, HighlightColor, ReadingItem
from lumina.core.preferences import PreferencesStore
from lumina.core.selection import SelectionTracker
from lumina.core.settings import Settings
from lumina.core.storage import DB, init_db
from lumina.providers.gemini import AIService, get_ai_service

logger = logging.getLogger(__name__)


@dataclass
class Session:
    db: DB
    service: AIService
    library: LibraryStore
    annotations: AnnotationStore
    preferences: PreferencesStore
    tracker: SelectionTracker = field(default_factory=SelectionTracker)
    controller: IngestionController = field(init=False)
    active_item_id: str | None = None

    def __post_init__(self) -> None:
        self.controller = IngestionController(self.service, self.library, self.preferences.get)

    @classmethod
    def load(cls, db: DB, service: AIService) -> Session:
        """Load every store from its snapshot, falling back to defaults."""
        return cls(
            db=db,
            service=service,
            library=LibraryStore.load_or_default(db),
            annotations=AnnotationStore.load_or_default(db),
            preferences=PreferencesStore.load_or_default(db),
        )

    @property
    def active_item(self) -> ReadingItem | None:
        if self.active_item_id is None:
            return None
        return self.library.get(self.active_item_id)

    def open_item(self, item_id: str) -> ReadingItem | None:
        item = self.library.get(item_id)
        if item is None:
            return None
        self.active_item_id = item.id
        self.tracker.clear()
        return item

    def close_item(self) -> None:
        self.active_item_id = None
        self.tracker.clear()

    def delete_item(self, item_id: str) -> bool:
        """Remove an item and all of its highlights as one write.

        Closes the reader if the item was open. Returns False if the item
        does not exist.

        Raises:
            StorageError: If the write failed; in-memory state is reloaded.
        """
        if self.library.get(item_id) is None:
            return False
        try:
            with self.db.transaction():
                self.library.remove(item_id)
                self.annotations.remove_for_item(item_id)
        except Exception:
            logger.exception(f"Deleting {item_id} failed, reloading stores")
            self.library.reload()
            self.annotations.reload()
            raise
        if self.active_item_id == item_id:
            self.close_item()
        return True

    def highlights_for_active_item(self) -> list[Highlight]:
        if self.active_item_id is None:
            return []
        return self.annotations.list_for_item(self.active_item_id)

    def highlight_selection(self, color: HighlightColor | str) -> Highlight | None:
        """Store the current selection as a highlight on the open item.

        Returns None when no item is open or nothing is selected.
        """
        item = self.active_item
        if item is None or self.tracker.anchor is None:
            return None
        color = HighlightColor(color)
        anchor = self.tracker.consume()
        if anchor is None:
            return None
        highlight = Highlight.new(
            item_id=item.id,
            text=anchor.text,
            color=color,
            range_start=anchor.start,
            range_end=anchor.end,
        )
        self.annotations.add(highlight)
        return highlight

    async def explain_selection(self) -> str | None:
        """Explain the current selection; None when there is nothing to explain."""
        item = self.active_item
        if item is None:
            return None
        anchor = self.tracker.consume()
        if anchor is None:
            return None
        return await explain_selection(self.service, anchor.text, item.content)


_session: Session | None = None


def init_session(settings: Settings | None = None, service: AIService | None = None) -> Session:
    global _session
    s = settings or Settings.from_env()
    db = init_db(s)
    _session = Session.load(db, service or get_ai_service(s))
    return _session


def get_session() -> Session:
    assert _session is not None, "Session not initialized"
    return _session
