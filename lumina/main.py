from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from lumina.core.anchoring import locate_highlights
from lumina.core.ingest_job import ImportInProgressError
from lumina.core.models import DISCOVER_SUGGESTIONS, HighlightColor, ThemeColor
from lumina.core.selection import Rect, SelectionState
from lumina.core.session import get_session, init_session
from lumina.core.settings import Settings

logger = logging.getLogger(__name__)

app = FastAPI(title="lumina")


class SearchBody(BaseModel):
    query: str


class SelectionBody(BaseModel):
    text: str = ""
    collapsed: bool = True
    inside_content: bool = False
    top: float = 0.0
    left: float = 0.0
    width: float = 0.0
    height: float = 0.0
    scroll_y: float = 0.0
    start: int | None = None
    end: int | None = None


class HighlightBody(BaseModel):
    color: HighlightColor


class SettingsBody(BaseModel):
    enable_ai_images: bool | None = None
    user_name: str | None = None
    theme_color: ThemeColor | None = None


@app.on_event("startup")
def _startup() -> None:
    s = Settings.from_env()
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_session(s)


@app.get("/api/health")
def api_health():
    return {"status": "ok"}


@app.get("/api/providers/health")
async def api_providers_health():
    result = await get_session().service.health_check()
    return asdict(result)


@app.get("/api/discover/suggestions")
def api_discover_suggestions():
    return {"suggestions": DISCOVER_SUGGESTIONS}


# ==================== Discover / Ingestion ====================


@app.post("/api/search")
async def api_search(body: SearchBody):
    """Grounded search. A failed or blank search returns `result: null`."""
    result = await get_session().controller.search(body.query)
    return {"result": result.to_dict() if result else None}


@app.get("/api/search/result")
def api_search_result():
    result = get_session().controller.last_result
    return {"result": result.to_dict() if result else None}


@app.post("/api/import")
async def api_import():
    """Import the last search result, streaming stage progress as SSE."""
    controller = get_session().controller
    try:
        job = controller.start_import()
    except ImportInProgressError as e:
        logger.info(f"Rejected import request: {e}")
        raise HTTPException(status_code=409, detail=str(e)) from e
    if job is None:
        return {"item": None}

    async def event_stream():
        async for event in controller.stream_import(job=job):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/api/import/cancel")
def api_import_cancel():
    return {"cancelled": get_session().controller.cancel_import()}


# ==================== Library ====================


@app.get("/api/library")
def api_library():
    return {"items": [i.to_dict() for i in get_session().library.list()]}


@app.get("/api/library/{item_id}")
def api_library_item(item_id: str):
    item = get_session().library.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return item.to_dict()


@app.delete("/api/library/{item_id}")
def api_library_delete(item_id: str):
    session = get_session()
    if not session.delete_item(item_id):
        raise HTTPException(status_code=404, detail="Item not found")
    return {"deleted": item_id, "active_item_id": session.active_item_id}


# ==================== Reader ====================


def _highlights_payload(item_id: str) -> list[dict]:
    session = get_session()
    item = session.library.get(item_id)
    highlights = session.annotations.list_for_item(item_id)
    spans = {s.highlight.id: s for s in locate_highlights(item.content, highlights)} if item else {}
    payload = []
    for h in highlights:
        row = h.to_dict()
        span = spans.get(h.id)
        row["located"] = {"start": span.start, "end": span.end, "exact": span.exact} if span else None
        payload.append(row)
    return payload


@app.post("/api/reader/{item_id}/open")
def api_reader_open(item_id: str):
    item = get_session().open_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"item": item.to_dict(), "highlights": _highlights_payload(item_id)}


@app.post("/api/reader/close")
def api_reader_close():
    get_session().close_item()
    return {"active_item_id": None}


@app.post("/api/reader/selection")
def api_reader_selection(body: SelectionBody):
    """Selection-change signal from the reader view."""
    anchor = get_session().tracker.on_selection_change(SelectionState(
        text=body.text,
        collapsed=body.collapsed,
        inside_content=body.inside_content,
        rect=Rect(top=body.top, left=body.left, width=body.width, height=body.height),
        scroll_y=body.scroll_y,
        start=body.start,
        end=body.end,
    ))
    return {"anchor": anchor.to_dict() if anchor else None}


@app.post("/api/reader/highlight")
def api_reader_highlight(body: HighlightBody):
    highlight = get_session().highlight_selection(body.color)
    return {"highlight": highlight.to_dict() if highlight else None}


@app.post("/api/reader/explain")
async def api_reader_explain():
    return {"explanation": await get_session().explain_selection()}


@app.get("/api/items/{item_id}/highlights")
def api_item_highlights(item_id: str):
    return {"highlights": _highlights_payload(item_id)}


@app.delete("/api/highlights/{highlight_id}")
def api_highlight_delete(highlight_id: str):
    if not get_session().annotations.remove(highlight_id):
        raise HTTPException(status_code=404, detail="Highlight not found")
    return {"deleted": highlight_id}


# ==================== Settings ====================


@app.get("/api/settings")
def api_settings():
    return get_session().preferences.get().to_dict()


@app.put("/api/settings")
def api_settings_update(body: SettingsBody):
    changes = {k: v for k, v in body.model_dump().items() if v is not None}
    return get_session().preferences.update(**changes).to_dict()


@app.post("/api/settings/reset")
def api_settings_reset():
    return get_session().preferences.reset().to_dict()
