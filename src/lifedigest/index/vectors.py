"""SQLite-backed vector index for digest chunks."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence

import numpy as np

from lifedigest.models import VectorDocument


class SQLiteVectorStore:
    """Chunk embeddings keyed by ``{file_path}:{source_type}:{chunk_index}``."""

    def __init__(self, db_path: Path, *, dimension: int | None = None) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vector_documents (
                    id TEXT PRIMARY KEY,
                    file_path TEXT NOT NULL,
                    source_type TEXT NOT NULL,
                    text TEXT NOT NULL,
                    metadata TEXT,
                    embedding BLOB NOT NULL
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_vector_documents_file_path
                    ON vector_documents(file_path)
                """
            )

    def upsert(self, documents: Sequence[VectorDocument], embeddings: np.ndarray) -> None:
        if embeddings.shape[0] != len(documents):
            raise ValueError("Embeddings and documents length mismatch")

        with self.transaction() as conn:
            for document, vector in zip(documents, embeddings):
                conn.execute(
                    """
                    INSERT INTO vector_documents(id, file_path, source_type, text, metadata, embedding)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        file_path = excluded.file_path,
                        source_type = excluded.source_type,
                        text = excluded.text,
                        metadata = excluded.metadata,
                        embedding = excluded.embedding
                    """,
                    (
                        document.id,
                        document.file_path,
                        document.source_type,
                        document.text,
                        json.dumps(document.metadata, ensure_ascii=True),
                        sqlite3.Binary(np.asarray(vector, dtype="float32").tobytes()),
                    ),
                )

    def get_hashes(self, ids: Sequence[str]) -> dict[str, str]:
        """Stored chunk hashes for the given ids, used to skip re-embedding."""
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self._conn.execute(
            f"SELECT id, metadata FROM vector_documents WHERE id IN ({placeholders})",
            list(ids),
        ).fetchall()
        hashes: dict[str, str] = {}
        for row in rows:
            metadata = json.loads(row["metadata"]) if row["metadata"] else {}
            if metadata.get("hash"):
                hashes[row["id"]] = metadata["hash"]
        return hashes

    def list_ids_for_file(self, file_path: str) -> List[str]:
        rows = self._conn.execute(
            "SELECT id FROM vector_documents WHERE file_path = ? ORDER BY id", (file_path,)
        ).fetchall()
        return [row["id"] for row in rows]

    def delete(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        with self.transaction() as conn:
            cursor = conn.executemany(
                "DELETE FROM vector_documents WHERE id = ?", [(doc_id,) for doc_id in ids]
            )
        return cursor.rowcount

    def delete_for_file(self, file_path: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM vector_documents WHERE file_path = ?", (file_path,))
        return cursor.rowcount

    def search(self, embedding: np.ndarray, *, top_k: int = 10) -> List[dict]:
        query = np.asarray(embedding, dtype="float32")
        rows = self._conn.execute(
            "SELECT id, file_path, source_type, text, metadata, embedding FROM vector_documents"
        ).fetchall()

        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        if top_k < len(scores):
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        results: List[dict] = []
        for idx in top_indices:
            row = rows[idx]
            results.append(
                {
                    "id": row["id"],
                    "file_path": row["file_path"],
                    "source_type": row["source_type"],
                    "text": row["text"],
                    "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
                    "score": float(scores[idx]),
                }
            )
        return results
