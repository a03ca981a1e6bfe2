"""Re-locating stored highlights inside (possibly edited) item content.

Offsets recorded at highlight time are trusted only while the content still
holds the highlighted text at that position. Otherwise the literal text is
searched for, preferring the occurrence closest to the stale offset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from lumina.core.models import Highlight


@dataclass(frozen=True)
class HighlightSpan:
    highlight: Highlight
    start: int
    end: int
    exact: bool  # True when the stored offsets still matched


def _occurrences(content: str, text: str) -> list[int]:
    positions: list[int] = []
    idx = content.find(text)
    while idx != -1:
        positions.append(idx)
        idx = content.find(text, idx + 1)
    return positions


def locate_highlight(content: str, highlight: Highlight) -> HighlightSpan | None:
    text = highlight.text
    if not text:
        return None

    start, end = highlight.range_start, highlight.range_end
    if start is not None and end is not None and content[start:end] == text:
        return HighlightSpan(highlight, start, end, exact=True)

    positions = _occurrences(content, text)
    if not positions:
        return None
    if start is not None:
        best = min(positions, key=lambda p: abs(p - start))
    else:
        best = positions[0]
    return HighlightSpan(highlight, best, best + len(text), exact=False)


def locate_highlights(content: str, highlights: Iterable[Highlight]) -> list[HighlightSpan]:
    """Spans for every highlight still present in `content`, in text order."""
    spans = [s for s in (locate_highlight(content, h) for h in highlights) if s is not None]
    return sorted(spans, key=lambda s: (s.start, s.end))
