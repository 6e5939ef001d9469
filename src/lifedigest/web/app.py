"""FastAPI application exposing search and digest status over HTTP."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from lifedigest import __version__
from lifedigest.config import AppConfig
from lifedigest.index.search import DEFAULT_LIMIT, SearchResponse
from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.models import DigestRecord
from lifedigest.runtime import build_coordinator, build_searcher, load_embedder, open_store

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="LifeDigest API", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str
    limit: int = DEFAULT_LIMIT
    keyword_weight: float = Field(0.5, ge=0)
    semantic_weight: float = Field(0.5, ge=0)
    db: Path | None = None


class DigestPayload(BaseModel):
    path: str
    reset: bool = False
    digester: str | None = None
    db: Path | None = None


def configure(*, db_path: Path | None = None, data_root: Path | None = None) -> None:
    """Set the database and data root used when a request names none."""
    app.state.db_path = db_path
    app.state.data_root = data_root


def _config(db: Path | None) -> AppConfig:
    return AppConfig.from_env(
        db_path=db or getattr(app.state, "db_path", None),
        data_root=getattr(app.state, "data_root", None),
    )


def _resolve_db_path(db: Path | None) -> Path:
    return _config(db).resolve_db_path(Path.cwd())


def _require_db(db: Path | None) -> AppConfig:
    config = _config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise HTTPException(
            status_code=404,
            detail=f"Database not found at {resolved_db}. Run 'lifedigest scan' first.",
        )
    return config


def _clean_relative_path(raw: str) -> str:
    """Validate a data-root relative path coming from a client."""
    clean_path = raw.strip().replace("\r", "").replace("\n", "")
    if not clean_path:
        raise HTTPException(status_code=400, detail="No path provided")
    if "\0" in clean_path:
        raise HTTPException(status_code=400, detail="Invalid path: contains null byte")
    parts = PurePosixPath(clean_path).parts
    if clean_path.startswith("/") or ".." in parts:
        raise HTTPException(status_code=400, detail="Invalid path: must be relative to the data root")
    return clean_path


def _digest_to_dict(record: DigestRecord) -> Dict[str, Any]:
    data = asdict(record)
    data["status"] = record.status.value
    return data


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


def _run_search(config: AppConfig, payload: SearchPayload, query: str) -> SearchResponse:
    searcher = build_searcher(config)
    try:
        return searcher.search(
            query,
            limit=payload.limit,
            keyword_weight=payload.keyword_weight,
            semantic_weight=payload.semantic_weight,
        )
    finally:
        searcher.close()


@app.post("/search")
async def search_files(payload: SearchPayload) -> Dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Empty query")

    config = _require_db(payload.db)
    try:
        response = await asyncio.to_thread(_run_search, config, payload, query)
    except Exception as exc:
        LOGGER.exception("Search failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return {
        "results": [asdict(result) for result in response.results],
        "keyword_count": response.keyword_count,
        "semantic_count": response.semantic_count,
        "limit": response.limit,
    }


@app.get("/digests")
async def list_digests(path: str, db: Path | None = None) -> Dict[str, Any]:
    """All digest records of one file."""
    file_path = _clean_relative_path(path)
    config = _require_db(db)
    store = open_store(config)
    try:
        file = store.get_file(file_path)
        if file is None:
            raise HTTPException(status_code=404, detail=f"File not found: {file_path}")
        digests = store.list_digests_for_path(file_path)
    finally:
        store.close()
    return {"path": file_path, "digests": [_digest_to_dict(record) for record in digests]}


@app.post("/digest")
async def digest_file(payload: DigestPayload) -> Dict[str, Any]:
    """Run the pipeline for one file right away, e.g. after an upload."""
    file_path = _clean_relative_path(payload.path)
    config = _require_db(payload.db)
    store = open_store(config)
    try:
        if store.get_file(file_path) is None:
            raise HTTPException(status_code=404, detail=f"File not found: {file_path}")
        if not store.acquire_lock(file_path):
            raise HTTPException(status_code=409, detail=f"{file_path} is already being processed")
        coordinator = None
        try:
            embedder = await asyncio.to_thread(load_embedder, config)
            coordinator = build_coordinator(config, store, embedder=embedder)
            coordinator.ensure_all_digesters(file_path)
            result = await coordinator.process_file(
                file_path, reset=payload.reset, digester=payload.digester
            )
            success = not store.has_failed_digests(file_path)
            digests = store.list_digests_for_path(file_path)
        except HTTPException:
            raise
        except Exception as exc:
            LOGGER.exception("Digest failed for %s: %s", file_path, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        finally:
            if coordinator is not None:
                coordinator.close()
            store.release_lock(file_path)
    finally:
        store.close()

    return {
        "status": "ok",
        "path": file_path,
        "success": success,
        "processed": result.processed,
        "skipped": result.skipped,
        "failed": result.failed,
        "digests": [_digest_to_dict(record) for record in digests],
    }


@app.get("/status")
async def digest_status(db: Path | None = None) -> Dict[str, Any]:
    """Digest counts per status."""
    resolved_db = _resolve_db_path(db)
    if not resolved_db.exists():
        return {"files": 0, "digests": {}}

    store = SQLiteDigestStore(resolved_db)
    try:
        counts = store.count_by_status()
        files: List[str] = [record.path for record in store.list_files()]
    finally:
        store.close()
    return {"files": len(files), "digests": counts}
