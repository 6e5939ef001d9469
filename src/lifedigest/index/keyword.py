"""Keyword index over digested text, backed by SQLite FTS5."""

from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from lifedigest.models import KeywordDocument

_TERM_RE = re.compile(r"\w+", re.UNICODE)


def build_match_query(query: str) -> str:
    """Quote each term so user input never reaches FTS5 as query syntax."""
    terms = _TERM_RE.findall(query)
    return " OR ".join(f'"{term}"' for term in terms)


class SQLiteKeywordStore:
    """One searchable document per file: content, summary and tags."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

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
                CREATE VIRTUAL TABLE IF NOT EXISTS keyword_documents USING fts5(
                    document_id UNINDEXED,
                    file_path,
                    mime_type UNINDEXED,
                    content,
                    summary,
                    tags,
                    tokenize='unicode61 remove_diacritics 2'
                )
                """
            )

    def upsert(self, document: KeywordDocument) -> None:
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM keyword_documents WHERE document_id = ?", (document.document_id,)
            )
            conn.execute(
                """
                INSERT INTO keyword_documents(document_id, file_path, mime_type, content, summary, tags)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.document_id,
                    document.file_path,
                    document.mime_type,
                    document.content,
                    document.summary or "",
                    document.tags or "",
                ),
            )

    def delete(self, document_id: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM keyword_documents WHERE document_id = ?", (document_id,)
            )
        return cursor.rowcount

    def delete_for_file(self, file_path: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM keyword_documents WHERE file_path = ?", (file_path,))
        return cursor.rowcount

    def search(self, query: str, *, limit: int = 20) -> List[dict]:
        match = build_match_query(query)
        if not match:
            return []
        rows = self._conn.execute(
            """
            SELECT document_id, file_path, mime_type, content, summary, tags,
                   bm25(keyword_documents) AS rank
            FROM keyword_documents
            WHERE keyword_documents MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (match, limit),
        ).fetchall()
        return [
            {
                "id": row["document_id"],
                "file_path": row["file_path"],
                "content": row["content"],
                "metadata": {
                    "mime_type": row["mime_type"],
                    "summary": row["summary"] or None,
                    "tags": row["tags"] or None,
                    "bm25": float(row["rank"]),
                },
            }
            for row in rows
        ]
