"""Selection tracking: turns raw selection-change signals into a toolbar anchor."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Vertical gap (px) between the selection and the floating toolbar
TOOLBAR_MARGIN = 60

# Selections of this many trimmed characters or fewer are ignored
MIN_SELECTION_LENGTH = 2


@dataclass(frozen=True)
class Rect:
    """Viewport-relative bounding box of a selection."""

    top: float
    left: float
    width: float = 0.0
    height: float = 0.0


@dataclass(frozen=True)
class SelectionState:
    """Snapshot of the ambient selection at one selection-change signal.

    `start`/`end` are character offsets into the item content when the
    presentation layer can supply them.
    """

    text: str
    collapsed: bool
    inside_content: bool
    rect: Rect
    scroll_y: float = 0.0
    start: int | None = None
    end: int | None = None


@dataclass(frozen=True)
class SelectionAnchor:
    """Presentable anchor for the highlight/explain toolbar."""

    text: str
    top: float
    left: float
    start: int | None = None
    end: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "top": self.top,
            "left": self.left,
            "start": self.start,
            "end": self.end,
        }


AnchorListener = Callable[["SelectionAnchor | None"], None]


def derive_anchor(state: SelectionState) -> SelectionAnchor | None:
    """Return the anchor for `state`, or None if the selection is not actionable."""
    if state.collapsed or not state.inside_content:
        return None
    if len(state.text.strip()) <= MIN_SELECTION_LENGTH:
        return None
    start, end = state.start, state.end
    if start is None or end is None or not 0 <= start < end:
        start = end = None
    return SelectionAnchor(
        text=state.text,
        top=state.rect.top + state.scroll_y - TOOLBAR_MARGIN,
        left=state.rect.left + state.rect.width / 2,
        start=start,
        end=end,
    )


class SelectionTracker:
    """Holds the current anchor and notifies listeners when it changes.

    Every signal recomputes the anchor from scratch; a newer selection simply
    replaces the previous one.
    """

    def __init__(self) -> None:
        self._anchor: SelectionAnchor | None = None
        self._listeners: list[AnchorListener] = []
        self._lock = threading.Lock()

    @property
    def anchor(self) -> SelectionAnchor | None:
        with self._lock:
            return self._anchor

    def subscribe(self, listener: AnchorListener) -> Callable[[], None]:
        """Register `listener`; returns a callable that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def on_selection_change(self, state: SelectionState) -> SelectionAnchor | None:
        return self._set(derive_anchor(state))

    def clear(self) -> None:
        self._set(None)

    def consume(self) -> SelectionAnchor | None:
        """Return the current anchor and clear it."""
        with self._lock:
            anchor = self._anchor
        self._set(None)
        return anchor

    def _set(self, anchor: SelectionAnchor | None) -> SelectionAnchor | None:
        with self._lock:
            changed = anchor != self._anchor
            self._anchor = anchor
            listeners = list(self._listeners)
        if changed:
            for listener in listeners:
                try:
                    listener(anchor)
                except Exception:
                    logger.exception("Selection listener failed")
        return anchor
