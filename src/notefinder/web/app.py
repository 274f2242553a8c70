"""FastAPI application exposing NoteFinder over HTTP."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from notefinder.config import AppConfig
from notefinder.errors import NoteFinderError
from notefinder.search.types import SearchOptions, SearchResult
from notefinder.service import NoteFinder

LOGGER = logging.getLogger(__name__)

MAX_LIMIT = 50

app = FastAPI(title="NoteFinder API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_engines: Dict[Path, NoteFinder] = {}
_engines_lock = asyncio.Lock()


class SearchPayload(BaseModel):
    query: str
    root: str
    limit: int = 10
    threshold: float | None = None
    use_keyword: bool = True
    use_semantic: bool = True


class OpenPayload(BaseModel):
    root: str
    doc_id: str
    query: str | None = None


class IndexPayload(BaseModel):
    root: str
    model: str | None = None
    exclude: List[str] = []


def _validate_root(raw: str) -> Path:
    clean = raw.strip().replace("\r", "").replace("\n", "")
    if not clean:
        raise HTTPException(status_code=400, detail="No root provided")
    if "\0" in clean:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")
    real_path = Path(os.path.realpath(os.path.expanduser(clean)))
    if not real_path.exists():
        raise HTTPException(status_code=404, detail=f"Path not found: {clean}")
    if not real_path.is_dir():
        raise HTTPException(status_code=400, detail=f"Path must be a directory: {clean}")
    return real_path


async def _get_engine(root: Path, config: AppConfig | None = None) -> NoteFinder:
    """Open engines are kept per notes root and refreshed on each use."""
    async with _engines_lock:
        engine = _engines.get(root)
        if engine is None:
            engine = NoteFinder(root, config or AppConfig())
            await engine.open()
            _engines[root] = engine
            LOGGER.info("Opened notes root %s", root)
            return engine
    await engine.refresh()
    return engine


async def _close_engine(root: Path) -> None:
    async with _engines_lock:
        engine = _engines.pop(root, None)
    if engine is not None:
        engine.close()


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.on_event("shutdown")
async def shutdown_event() -> None:
    for root in list(_engines):
        await _close_engine(root)


@app.post("/search")
async def search_notes(payload: SearchPayload) -> dict[str, List[SearchResult]]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    root = _validate_root(payload.root)
    options = SearchOptions(
        limit=max(1, min(payload.limit, MAX_LIMIT)),
        threshold=payload.threshold,
        use_keyword=payload.use_keyword,
        use_semantic=payload.use_semantic,
    )
    engine = await _get_engine(root)
    try:
        results = await engine.search(query, options)
    except NoteFinderError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"results": results}


@app.post("/open")
async def record_open(payload: OpenPayload) -> dict[str, str]:
    root = _validate_root(payload.root)
    engine = await _get_engine(root)
    if engine.corpus.get(payload.doc_id) is None:
        raise HTTPException(status_code=404, detail=f"Note not found: {payload.doc_id}")
    engine.record_open(payload.doc_id, payload.query)
    return {"status": "ok"}


@app.get("/graph/top")
async def top_notes(root: str, limit: int = 10) -> dict[str, Any]:
    engine = await _get_engine(_validate_root(root))
    ranked = engine.top_documents(max(1, min(limit, MAX_LIMIT)))
    return {"notes": [asdict(node) for node in ranked], "stats": asdict(engine.graph.stats())}


@app.get("/stats")
async def stats(root: str) -> dict[str, Any]:
    engine = await _get_engine(_validate_root(root))
    return engine.stats()


@app.post("/index")
async def index_notes(payload: IndexPayload) -> dict[str, Any]:
    root = _validate_root(payload.root)
    config = AppConfig()
    if payload.model:
        config.model_name = payload.model
    if payload.exclude:
        config.exclude_patterns = [*config.exclude_patterns, *payload.exclude]

    await _close_engine(root)
    engine = NoteFinder(root, config)
    try:
        index_stats = await engine.open()
    except Exception as exc:
        engine.close()
        LOGGER.exception("Indexing failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    async with _engines_lock:
        _engines[root] = engine

    return {
        "status": "ok",
        "root": str(root),
        "stats": {
            "indexed": index_stats.indexed,
            "unchanged": index_stats.unchanged,
            "excluded": index_stats.excluded,
            "empty": index_stats.empty,
            "failed": index_stats.failed,
        },
    }
