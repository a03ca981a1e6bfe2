"""Tests for the annotation store."""

import pytest

from lumina.core.annotations import AnnotationStore
from lumina.core.models import Highlight, HighlightColor
from lumina.core.storage import HIGHLIGHTS_KEY, connect


@pytest.fixture
def db():
    return connect(":memory:")


@pytest.fixture
def store(db):
    return AnnotationStore.load_or_default(db)


def _hl(item_id: str, text: str = "some text", color: HighlightColor = HighlightColor.YELLOW) -> Highlight:
    return Highlight.new(item_id=item_id, text=text, color=color)


class TestAnnotationStore:
    def test_starts_empty(self, store):
        assert store.list() == []

    def test_add_appends_and_persists(self, store, db):
        a, b = _hl("x", "first"), _hl("x", "second")
        store.add(a)
        store.add(b)
        assert [h.text for h in store.list()] == ["first", "second"]
        assert [row["id"] for row in db.get_snapshot(HIGHLIGHTS_KEY)] == [a.id, b.id]

    def test_list_for_item_filters_and_keeps_order(self, store):
        store.add(_hl("x", "one"))
        store.add(_hl("y", "other"))
        store.add(_hl("x", "two"))
        result = store.list_for_item("x")
        assert [h.text for h in result] == ["one", "two"]
        assert all(h.item_id == "x" for h in result)

    def test_list_for_unknown_item(self, store):
        store.add(_hl("x"))
        assert store.list_for_item("nope") == []

    def test_remove(self, store):
        h = _hl("x")
        store.add(h)
        assert store.remove(h.id) is True
        assert store.remove(h.id) is False
        assert store.list() == []

    def test_remove_for_item_only_touches_owner(self, store, db):
        store.add(_hl("x", "a"))
        store.add(_hl("y", "b"))
        store.add(_hl("x", "c"))

        assert store.remove_for_item("x") == 2
        assert [h.text for h in store.list()] == ["b"]
        assert [row["text"] for row in db.get_snapshot(HIGHLIGHTS_KEY)] == ["b"]

    def test_remove_for_item_without_highlights(self, store):
        assert store.remove_for_item("x") == 0

    def test_survives_reload(self, store, db):
        h = _hl("x", "ethical AI", HighlightColor.GREEN)
        store.add(h)
        reloaded = AnnotationStore.load_or_default(db)
        assert reloaded.list() == [h]
