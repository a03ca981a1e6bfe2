"""Library, highlight and preference records plus their JSON snapshot forms."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import urlparse


class ContentKind(str, Enum):
    """Kind of a library entry."""

    BOOK = "book"
    ARTICLE = "article"
    NEWS = "news"


class HighlightColor(str, Enum):
    """Fixed palette for highlights."""

    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    PINK = "pink"


class ThemeColor(str, Enum):
    """Accent color of the UI."""

    TEAL = "teal"
    BLUE = "blue"
    VIOLET = "violet"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: str | None) -> datetime:
    if not value:
        return utcnow()
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Source:
    """A citation returned alongside a grounded search."""

    title: str
    uri: str

    @property
    def hostname(self) -> str:
        return urlparse(self.uri).hostname or ""

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "uri": self.uri, "hostname": self.hostname}


def dedupe_sources(sources: list[Source]) -> list[Source]:
    """Keep the first source seen for every URI, preserving order."""
    seen: set[str] = set()
    unique: list[Source] = []
    for source in sources:
        if source.uri in seen:
            continue
        seen.add(source.uri)
        unique.append(source)
    return unique


@dataclass(frozen=True)
class SearchResult:
    """Transient outcome of one discovery search. Never persisted."""

    text: str
    sources: tuple[Source, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "sources", tuple(dedupe_sources(list(self.sources))))

    @property
    def first_source_uri(self) -> str | None:
        return self.sources[0].uri if self.sources else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "sources": [s.to_dict() for s in self.sources],
        }


@dataclass(frozen=True)
class ReadingItem:
    """A library entry. `id` and `date_added` never change after creation."""

    id: str
    title: str
    content: str
    kind: ContentKind = ContentKind.ARTICLE
    date_added: datetime = field(default_factory=utcnow)
    author: str | None = None
    description: str | None = None
    cover_image: str | None = None  # URI or data: URI
    source_url: str | None = None

    @classmethod
    def new(cls, title: str, content: str, **kwargs: Any) -> ReadingItem:
        return cls(id=str(uuid.uuid4()), title=title, content=content, date_added=utcnow(), **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "content": self.content,
            "kind": self.kind.value,
            "date_added": self.date_added.isoformat(),
            "description": self.description,
            "cover_image": self.cover_image,
            "source_url": self.source_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadingItem:
        return cls(
            id=data["id"],
            title=data["title"],
            content=data.get("content", ""),
            kind=ContentKind(data.get("kind", ContentKind.ARTICLE.value)),
            date_added=_parse_dt(data.get("date_added")),
            author=data.get("author"),
            description=data.get("description"),
            cover_image=data.get("cover_image"),
            source_url=data.get("source_url"),
        )


@dataclass(frozen=True)
class Highlight:
    """A color-tagged excerpt owned by one reading item."""

    id: str
    item_id: str
    text: str
    color: HighlightColor
    created_at: datetime = field(default_factory=utcnow)
    note: str | None = None
    range_start: int | None = None
    range_end: int | None = None

    @classmethod
    def new(
        cls,
        item_id: str,
        text: str,
        color: HighlightColor,
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> Highlight:
        return cls(
            id=str(uuid.uuid4()),
            item_id=item_id,
            text=text,
            color=HighlightColor(color),
            created_at=utcnow(),
            range_start=range_start,
            range_end=range_end,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "text": self.text,
            "color": self.color.value,
            "created_at": self.created_at.isoformat(),
            "note": self.note,
            "range_start": self.range_start,
            "range_end": self.range_end,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Highlight:
        return cls(
            id=data["id"],
            item_id=data["item_id"],
            text=data["text"],
            color=HighlightColor(data.get("color", HighlightColor.YELLOW.value)),
            created_at=_parse_dt(data.get("created_at")),
            note=data.get("note"),
            range_start=data.get("range_start"),
            range_end=data.get("range_end"),
        )


@dataclass
class AppSettings:
    """The single per-profile preference record."""

    enable_ai_images: bool = True
    user_name: str = "Reader"
    theme_color: ThemeColor = ThemeColor.TEAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "enable_ai_images": self.enable_ai_images,
            "user_name": self.user_name,
            "theme_color": self.theme_color.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppSettings:
        defaults = cls()
        return cls(
            enable_ai_images=bool(data.get("enable_ai_images", defaults.enable_ai_images)),
            user_name=str(data.get("user_name", defaults.user_name)),
            theme_color=ThemeColor(data.get("theme_color", defaults.theme_color.value)),
        )


DEMO_CONTENT = """
# The Future of Artificial Intelligence

Artificial Intelligence (AI) is no longer a concept confined to science fiction; it is a reality that is rapidly transforming our world. From the algorithms that power our social media feeds to the advanced diagnostics in healthcare, AI is pervasive.

## The Impact on Healthcare
One of the most promising areas for AI application is healthcare. Machine learning models are now capable of analyzing medical images with accuracy that rivals, and sometimes exceeds, human experts. This capability allows for earlier detection of diseases such as cancer, potentially saving countless lives.

## Creative Renaissance
Contrary to the fear that AI will replace human creativity, many artists are finding it to be a powerful tool. Generative AI models allow creators to explore new visual styles, generate musical ideas, and even brainstorm plot points for novels.

## Ethical Considerations
However, this rapid progress comes with challenges. Issues of bias in algorithms, data privacy, and the displacement of jobs are critical conversations that society must address. As we move forward, the goal should be to develop ethical AI that augments human capabilities rather than diminishing them.
"""


def demo_items() -> list[ReadingItem]:
    """Entries seeded into an empty library on first run."""
    return [
        ReadingItem(
            id="demo-1",
            title="The Future of AI",
            author="Tech Daily",
            description=(
                "An exploration of how Artificial Intelligence is reshaping our world, "
                "from healthcare to creative arts."
            ),
            content=DEMO_CONTENT,
            kind=ContentKind.ARTICLE,
            date_added=utcnow() - timedelta(seconds=10_000),
            cover_image=(
                "https://images.unsplash.com/photo-1677442136019-21780ecad995"
                "?auto=format&fit=crop&q=80&w=1600"
            ),
        )
    ]


# Starter queries shown on the discover view
DISCOVER_SUGGESTIONS: list[str] = [
    "Latest sci-fi books released in 2024",
    "News about renewable energy breakthroughs",
    "History of the Roman Empire",
    "Best beginner gardening guides",
    "Analysis of recent tech market trends",
    "Classic literature summaries",
]
