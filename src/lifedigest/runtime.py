"""Wire stores, vendor clients and digesters together from an `AppConfig`."""

from __future__ import annotations

import logging
from pathlib import Path

from lifedigest.config import AppConfig
from lifedigest.digest.base import DigestContext
from lifedigest.digest.coordinator import DigestCoordinator
from lifedigest.digest.registry import build_default_registry
from lifedigest.embedding.encoder import EmbeddingConfig, EmbeddingModel
from lifedigest.index.ingest import VectorIngestor
from lifedigest.index.keyword import SQLiteKeywordStore
from lifedigest.index.search import HybridSearcher
from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.index.vectors import SQLiteVectorStore
from lifedigest.vendors.crawler import WebCrawler
from lifedigest.vendors.haid import HaidClient
from lifedigest.vendors.openai import OpenAIClient

LOGGER = logging.getLogger(__name__)


def ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def open_store(config: AppConfig) -> SQLiteDigestStore:
    """Open the digest store. Raises `StoreError` when the database is unusable."""
    db_path = config.resolve_db_path()
    ensure_db_parent(db_path)
    return SQLiteDigestStore(
        db_path,
        max_attempts=config.max_attempts,
        excluded_path_prefixes=config.excluded_path_prefixes,
    )


def load_embedder(config: AppConfig) -> EmbeddingModel:
    return EmbeddingModel(EmbeddingConfig(model_name=config.model_name))


def build_context(config: AppConfig, embedder: EmbeddingModel) -> DigestContext:
    db_path = config.resolve_db_path()
    openai = OpenAIClient(
        config.openai_base_url,
        api_key=config.openai_api_key,
        model=config.openai_model,
        timeout=config.vendor_timeout,
    )
    haid = HaidClient(
        config.haid_base_url,
        api_key=config.haid_api_key,
        timeout=config.vendor_timeout,
    )
    if not openai.configured:
        LOGGER.warning("No OpenAI-compatible endpoint configured; AI digesters will fail")
    if not haid.configured:
        LOGGER.warning("No HAID endpoint configured; OCR, captioning and speech digesters will fail")

    vectors = SQLiteVectorStore(db_path, dimension=embedder.dimension)
    return DigestContext(
        data_root=Path(config.data_root),
        openai=openai if openai.configured else None,
        haid=haid if haid.configured else None,
        ingestor=VectorIngestor(
            embedder,
            vectors,
            target_tokens=config.target_tokens,
            overlap_percent=config.overlap_percent,
        ),
        keywords=SQLiteKeywordStore(db_path),
        crawler=WebCrawler(timeout=config.vendor_timeout),
    )


def build_coordinator(
    config: AppConfig,
    store: SQLiteDigestStore,
    *,
    embedder: EmbeddingModel | None = None,
) -> DigestCoordinator:
    context = build_context(config, embedder or load_embedder(config))
    return DigestCoordinator(store, build_default_registry(context), context=context)


def build_searcher(config: AppConfig, *, embedder: EmbeddingModel | None = None) -> HybridSearcher:
    db_path = config.resolve_db_path()
    embedder = embedder or load_embedder(config)
    return HybridSearcher(
        embedder,
        SQLiteVectorStore(db_path, dimension=embedder.dimension),
        SQLiteKeywordStore(db_path),
    )
