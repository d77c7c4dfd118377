"""FastAPI web server – ingestion trigger and news feed read API.

Run:
    python main.py --serve            # or
    uvicorn web.app:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ingest.pipeline import ingest_all, ingest_source
from process.rank import Ranker
from storage import db
from storage.models import from_db_time
from storage.query import FeedQuery, get_feed, get_item, items_since, parse_cursor

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if not db.is_initialised():
        db.init_db()
    yield


# ── App ──────────────────────────────────────────────────────────────
app = FastAPI(title="RoboticsHub Feed", version="1.0.0", lifespan=lifespan)


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


# ── API: health ──────────────────────────────────────────────────────


@app.get("/api/health")
def health():
    return {"ok": True}


# ── API: ingestion trigger ───────────────────────────────────────────


async def _requested_source_id(request: Request) -> Optional[str]:
    """source_id from the query string, or from a JSON body on POST."""
    raw = request.query_params.get("source_id")
    if raw is None and request.method == "POST":
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict):
            raw = payload.get("source_id")
    if raw in (None, ""):
        return None
    return str(raw)


@app.api_route("/api/ingest", methods=["GET", "POST"])
async def trigger_ingest(request: Request):
    """Ingest one source (``source_id``) or sweep every enabled source."""
    raw_id = await _requested_source_id(request)
    try:
        if raw_id is not None:
            try:
                source_id = int(raw_id)
            except ValueError:
                return _error(400, "invalid_source_id")
            source = db.get_source(source_id)
            if source is None:
                return _error(404, "source_not_found")
            result = ingest_source(source)
            return {"ok": True, "result": result.to_dict()}

        results = ingest_all()
        return {"ok": True, "results": [r.to_dict() for r in results]}
    except Exception as exc:
        log.exception("Ingestion request failed")
        return _error(500, str(exc))


# ── API: feed ────────────────────────────────────────────────────────


@app.get("/api/feed")
def read_feed(
    level: Optional[str] = None,
    program: Optional[str] = None,
    programs: Optional[list[str]] = Query(None),
    source_programs: Optional[list[str]] = Query(None, alias="sourcePrograms"),
    item_type: Optional[str] = Query(None, alias="type"),
    cursor: Optional[str] = None,
    limit: int = 24,
    source_id: Optional[int] = Query(None, alias="sourceId"),
    interests: Optional[list[str]] = Query(None),
):
    """One page of the feed, newest first.

    With ``interests`` the page is program-filtered (falling back to the
    unfiltered page when nothing matches) and ranked for the viewer.
    """
    ranker = Ranker(interests) if interests else None
    query_programs = list(programs or [])
    if ranker is not None and not query_programs and not program:
        query_programs = ranker.query_programs

    query = FeedQuery(
        level=level,
        program=program,
        programs=query_programs,
        source_programs=list(source_programs or []),
        type=item_type,
        cursor=cursor,
        limit=limit,
        source_id=source_id,
    )
    try:
        page = get_feed(query)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if ranker is not None:
        page.items = ranker.present(page.items)
    return page.to_dict()


# ── API: items ───────────────────────────────────────────────────────


@app.get("/api/items")
def read_items_since(since: str, limit: int = Query(50, ge=1, le=500)):
    """Items published at or after *since* (ISO-8601), newest first."""
    try:
        since_dt = from_db_time(parse_cursor(since))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"items": [i.to_dict() for i in items_since(since_dt, limit=limit)]}


@app.get("/api/items/{item_id}")
def read_item(item_id: str):
    item = get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"No item {item_id}")
    return item.to_dict()


# ── API: sources ─────────────────────────────────────────────────────


@app.get("/api/sources")
def read_sources():
    """Enabled sources ordered by name."""
    return {"sources": [s.to_dict() for s in db.list_sources_by_name()]}
