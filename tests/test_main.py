"""Tests for the HTTP API."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from lumina.core.models import DEMO_CONTENT, SearchResult, Source
from lumina.core.session import Session
from lumina.core.storage import connect
from lumina.main import api_import, app
from lumina.providers.gemini import ExtractedItem, HealthCheckResult


@pytest.fixture
def service():
    service = MagicMock()
    service.search = AsyncMock(return_value=SearchResult(
        text="Top sci-fi of 2024...",
        sources=(Source(title="A", uri="https://a.example"),),
    ))
    service.extract_structured_item = AsyncMock(return_value=ExtractedItem(
        title="Sci-Fi in 2024", author="Books Weekly", description="A roundup.", content="# Sci-Fi"
    ))
    service.synthesize_image = AsyncMock(return_value=None)
    service.explain = AsyncMock(return_value="It means...")
    service.health_check = AsyncMock(return_value=HealthCheckResult(
        healthy=True, provider="gemini", model="gemini-test", message="OK", latency_ms=12
    ))
    return service


@pytest.fixture
def session(service, monkeypatch):
    s = Session.load(connect(":memory:"), service)
    monkeypatch.setattr("lumina.core.session._session", s)
    return s


@pytest.fixture
def client(session):
    return TestClient(app)


def _sse_events(body: str) -> list[dict]:
    events = []
    for block in body.strip().split("\n\n"):
        for line in block.splitlines():
            if line.startswith("data: "):
                events.append(json.loads(line[len("data: "):]))
    return events


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_providers_health(client):
    data = client.get("/api/providers/health").json()
    assert data["healthy"] is True
    assert data["model"] == "gemini-test"


def test_discover_suggestions(client):
    assert len(client.get("/api/discover/suggestions").json()["suggestions"]) == 6


def test_library_lists_demo_item(client):
    items = client.get("/api/library").json()["items"]
    assert [i["id"] for i in items] == ["demo-1"]
    assert client.get("/api/library/demo-1").json()["author"] == "Tech Daily"
    assert client.get("/api/library/missing").status_code == 404


def test_search_then_import_streams_progress(client, session):
    result = client.post("/api/search", json={"query": "sci-fi books 2024"}).json()["result"]
    assert result["sources"][0]["uri"] == "https://a.example"
    assert client.get("/api/search/result").json()["result"]["text"] == "Top sci-fi of 2024..."

    response = client.post("/api/import")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert events[0]["phase"] == "analyzing"
    assert events[-1]["type"] == "import_complete"
    assert events[-1]["item"]["title"] == "Sci-Fi in 2024"
    assert session.library.list()[0].title == "Sci-Fi in 2024"


def test_import_without_result(client, session):
    assert client.post("/api/import").json() == {"item": None}
    assert len(session.library) == 1


def test_import_while_running_conflicts(client, session):
    client.post("/api/search", json={"query": "q"})
    session.controller.jobs.create()
    assert client.post("/api/import").status_code == 409
    assert client.post("/api/import/cancel").json() == {"cancelled": True}


@pytest.mark.asyncio
async def test_overlapping_imports_conflict(session):
    await session.controller.search("q")

    first = await api_import()
    with pytest.raises(HTTPException) as exc_info:
        await api_import()
    assert exc_info.value.status_code == 409

    body = "".join([chunk async for chunk in first.body_iterator])
    assert _sse_events(body)[-1]["type"] == "import_complete"
    assert session.controller.jobs.get_running() is None
    assert session.library.list()[0].title == "Sci-Fi in 2024"


def test_blank_search(client, service):
    assert client.post("/api/search", json={"query": "  "}).json() == {"result": None}
    service.search.assert_not_called()


def test_reader_highlight_flow(client):
    assert client.post("/api/reader/demo-1/open").json()["item"]["id"] == "demo-1"

    start = DEMO_CONTENT.index("ethical AI")
    anchor = client.post("/api/reader/selection", json={
        "text": "ethical AI",
        "collapsed": False,
        "inside_content": True,
        "top": 300,
        "left": 100,
        "width": 80,
        "scroll_y": 20,
        "start": start,
        "end": start + 10,
    }).json()["anchor"]
    assert anchor["top"] == 260
    assert anchor["left"] == 140

    highlight = client.post("/api/reader/highlight", json={"color": "yellow"}).json()["highlight"]
    assert highlight["text"] == "ethical AI"

    rows = client.get("/api/items/demo-1/highlights").json()["highlights"]
    assert rows[0]["located"] == {"start": start, "end": start + 10, "exact": True}

    assert client.delete(f"/api/highlights/{highlight['id']}").json() == {"deleted": highlight["id"]}
    assert client.delete(f"/api/highlights/{highlight['id']}").status_code == 404


def test_highlight_rejects_unknown_color(client):
    assert client.post("/api/reader/highlight", json={"color": "purple"}).status_code == 422


def test_short_selection_has_no_anchor(client):
    response = client.post("/api/reader/selection", json={
        "text": " a ", "collapsed": False, "inside_content": True,
    })
    assert response.json() == {"anchor": None}


def test_explain(client, service):
    client.post("/api/reader/demo-1/open")
    client.post("/api/reader/selection", json={
        "text": "Generative AI", "collapsed": False, "inside_content": True,
    })
    assert client.post("/api/reader/explain").json() == {"explanation": "It means..."}
    assert client.post("/api/reader/explain").json() == {"explanation": None}


def test_delete_item_closes_reader(client, session):
    client.post("/api/reader/demo-1/open")
    response = client.delete("/api/library/demo-1")
    assert response.json() == {"deleted": "demo-1", "active_item_id": None}
    assert client.delete("/api/library/demo-1").status_code == 404


def test_settings_update_and_reset(client):
    assert client.get("/api/settings").json()["enable_ai_images"] is True

    updated = client.put("/api/settings", json={"enable_ai_images": False, "theme_color": "violet"}).json()
    assert updated["enable_ai_images"] is False
    assert updated["theme_color"] == "violet"
    assert updated["user_name"] == "Reader"

    assert client.put("/api/settings", json={"theme_color": "red"}).status_code == 422
    assert client.post("/api/settings/reset").json()["theme_color"] == "teal"
