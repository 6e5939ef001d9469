"""Vector ingestion: chunk digested text sources and upsert their embeddings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from lifedigest.embedding.encoder import EmbeddingModel
from lifedigest.index.vectors import SQLiteVectorStore
from lifedigest.models import VectorDocument
from lifedigest.utils.text import (
    DEFAULT_OVERLAP_PERCENT,
    DEFAULT_TARGET_TOKENS,
    chunk_text,
    document_id,
)

LOGGER = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 32

Source = Tuple[str, str]


@dataclass(slots=True)
class IngestStats:
    inserted: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def document_ids(self) -> List[str]:
        return self.inserted + self.unchanged


class VectorIngestor:
    """Turns a file's content sources into vector documents, idempotently.

    Document ids are derived from file path, source type and chunk index, so
    re-ingesting a file overwrites its previous chunks in place. Chunks whose
    text hash is unchanged are not re-embedded, and ids that were not produced
    by the latest pass are deleted.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        target_tokens: int = DEFAULT_TARGET_TOKENS,
        overlap_percent: float = DEFAULT_OVERLAP_PERCENT,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.target_tokens = target_tokens
        self.overlap_percent = overlap_percent

    def build_documents(
        self, file_path: str, sources: Sequence[Source], *, mime_type: str | None = None
    ) -> List[VectorDocument]:
        documents: List[VectorDocument] = []
        for source_type, text in sources:
            if not text or not text.strip():
                continue
            for chunk in chunk_text(
                text, target_tokens=self.target_tokens, overlap_percent=self.overlap_percent
            ):
                documents.append(
                    VectorDocument(
                        id=document_id(file_path, source_type, chunk.index),
                        file_path=file_path,
                        source_type=source_type,
                        text=chunk.text,
                        metadata={
                            "mime_type": mime_type,
                            "chunk_index": chunk.index,
                            "chunk_count": chunk.count,
                            "span_start": chunk.span_start,
                            "span_end": chunk.span_end,
                            "overlap_tokens": chunk.overlap_tokens,
                            "word_count": chunk.word_count,
                            "token_count": chunk.token_count,
                            "hash": chunk.hash,
                        },
                    )
                )
        return documents

    def _partition(self, documents: Sequence[VectorDocument]) -> Tuple[List[VectorDocument], List[str]]:
        stored = self.store.get_hashes([doc.id for doc in documents])
        changed: List[VectorDocument] = []
        unchanged: List[str] = []
        for doc in documents:
            if stored.get(doc.id) == doc.metadata["hash"]:
                unchanged.append(doc.id)
            else:
                changed.append(doc)
        return changed, unchanged

    def _finish(
        self, file_path: str, documents: Sequence[VectorDocument], unchanged: List[str]
    ) -> IngestStats:
        stats = IngestStats(inserted=[doc.id for doc in documents], unchanged=unchanged)
        keep = set(stats.document_ids)
        stale = [doc_id for doc_id in self.store.list_ids_for_file(file_path) if doc_id not in keep]
        self.store.delete(stale)
        stats.deleted = stale
        LOGGER.debug(
            "Ingested %s: %d embedded, %d unchanged, %d removed",
            file_path,
            len(stats.inserted),
            len(stats.unchanged),
            len(stats.deleted),
        )
        return stats

    def _plan(
        self, file_path: str, sources: Sequence[Source], mime_type: str | None
    ) -> Tuple[List[VectorDocument], List[str], List[List[VectorDocument]]]:
        """Changed documents, unchanged ids, and the changed documents in embedding batches."""
        changed, unchanged = self._partition(
            self.build_documents(file_path, sources, mime_type=mime_type)
        )
        batches = [
            changed[start : start + EMBED_BATCH_SIZE]
            for start in range(0, len(changed), EMBED_BATCH_SIZE)
        ]
        return changed, unchanged, batches

    def ingest(
        self, file_path: str, sources: Sequence[Source], *, mime_type: str | None = None
    ) -> IngestStats:
        changed, unchanged, batches = self._plan(file_path, sources, mime_type)
        for batch in batches:
            self.store.upsert(batch, self.embedder.embed([doc.text for doc in batch]))
        return self._finish(file_path, changed, unchanged)

    async def ingest_async(
        self, file_path: str, sources: Sequence[Source], *, mime_type: str | None = None
    ) -> IngestStats:
        """Same as `ingest`, with embedding moved off the event loop."""
        changed, unchanged, batches = self._plan(file_path, sources, mime_type)
        for batch in batches:
            embeddings: np.ndarray = await asyncio.to_thread(
                self.embedder.embed, [doc.text for doc in batch]
            )
            self.store.upsert(batch, embeddings)
        return self._finish(file_path, changed, unchanged)
