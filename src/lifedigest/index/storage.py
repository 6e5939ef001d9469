"""SQLite store for files, digest records and processing locks."""

from __future__ import annotations

import logging
import os
import socket
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Sequence

from lifedigest.errors import StoreError
from lifedigest.models import (
    DigestInput,
    DigestRecord,
    DigestStatus,
    FileRecord,
    to_timestamp,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


def process_owner() -> str:
    """Lock owner tag for the current process."""
    return f"{socket.gethostname()}:{os.getpid()}"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _cutoff(value: datetime | str) -> str:
    if isinstance(value, datetime):
        return to_timestamp(value)
    return value


class SQLiteDigestStore:
    """Persistence layer for file records, digest status and per-file locks."""

    def __init__(
        self,
        db_path: Path,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        excluded_path_prefixes: Sequence[str] = (),
        owner: str | None = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.max_attempts = max_attempts
        self.excluded_path_prefixes = tuple(excluded_path_prefixes)
        self.owner = owner or process_owner()
        try:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA busy_timeout=5000;")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open digest store at {self.db_path}: {exc}") from exc

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
                CREATE TABLE IF NOT EXISTS files (
                    path TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    is_folder INTEGER NOT NULL DEFAULT 0,
                    mime_type TEXT,
                    size INTEGER,
                    hash TEXT,
                    created_at TEXT NOT NULL,
                    modified_at TEXT NOT NULL,
                    last_scanned_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS digests (
                    id INTEGER PRIMARY KEY,
                    file_path TEXT NOT NULL,
                    digester TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    content TEXT,
                    error TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(file_path, digester)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_digests_status
                    ON digests(status, updated_at)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processing_locks (
                    file_path TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
                """
            )

    # Files

    def upsert_file(self, record: FileRecord) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO files(path, name, is_folder, mime_type, size, hash,
                                  created_at, modified_at, last_scanned_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    name = excluded.name,
                    is_folder = excluded.is_folder,
                    mime_type = excluded.mime_type,
                    size = excluded.size,
                    hash = excluded.hash,
                    modified_at = excluded.modified_at,
                    last_scanned_at = excluded.last_scanned_at
                """,
                (
                    record.path,
                    record.name,
                    int(record.is_folder),
                    record.mime_type,
                    record.size,
                    record.hash,
                    record.created_at,
                    record.modified_at,
                    record.last_scanned_at,
                ),
            )

    def get_file(self, path: str) -> FileRecord | None:
        row = self._conn.execute("SELECT * FROM files WHERE path = ?", (path,)).fetchone()
        return _row_to_file(row) if row else None

    def list_files(self, *, include_folders: bool = False) -> List[FileRecord]:
        sql = "SELECT * FROM files"
        if not include_folders:
            sql += " WHERE is_folder = 0"
        rows = self._conn.execute(sql + " ORDER BY path").fetchall()
        return [_row_to_file(row) for row in rows]

    def delete_file(self, path: str) -> bool:
        """Remove a file record together with its digests and lock."""
        with self.transaction() as conn:
            deleted = conn.execute("DELETE FROM files WHERE path = ?", (path,)).rowcount
            conn.execute("DELETE FROM digests WHERE file_path = ?", (path,))
            conn.execute("DELETE FROM processing_locks WHERE file_path = ?", (path,))
        return deleted > 0

    # Digests

    def find_files_needing_digestion(self, limit: int = 100) -> List[str]:
        """Paths with pending or retriable failed digests, oldest scan first.

        Files with any digest currently in progress are left out so a running
        or crashed pass is not picked up twice before the stale sweep resets it.
        """
        clauses = [
            "f.is_folder = 0",
            "d.status IN (?, ?)",
            "d.attempts < ?",
            """d.file_path NOT IN (
                SELECT file_path FROM digests WHERE status = ?
            )""",
        ]
        params: List[object] = [
            DigestStatus.PENDING.value,
            DigestStatus.FAILED.value,
            self.max_attempts,
            DigestStatus.IN_PROGRESS.value,
        ]
        for prefix in self.excluded_path_prefixes:
            clauses.append("f.path NOT LIKE ?")
            params.append(f"{prefix}%")
        params.append(limit)

        rows = self._conn.execute(
            f"""
            SELECT d.file_path AS file_path
            FROM digests d
            JOIN files f ON f.path = d.file_path
            WHERE {' AND '.join(clauses)}
            GROUP BY d.file_path
            ORDER BY MIN(COALESCE(f.last_scanned_at, f.created_at)) ASC, d.file_path ASC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return [row["file_path"] for row in rows]

    def list_digests_for_path(self, path: str) -> List[DigestRecord]:
        rows = self._conn.execute(
            "SELECT * FROM digests WHERE file_path = ? ORDER BY id", (path,)
        ).fetchall()
        return [_row_to_digest(row) for row in rows]

    def get_digest_by_path_and_digester(self, path: str, digester: str) -> DigestRecord | None:
        row = self._conn.execute(
            "SELECT * FROM digests WHERE file_path = ? AND digester = ?",
            (path, digester),
        ).fetchone()
        return _row_to_digest(row) if row else None

    def create_placeholder(self, path: str, digester: str) -> bool:
        """Insert a pending row unless one already exists. Returns True if created."""
        now = utc_now()
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO digests(file_path, digester, status, attempts, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                """,
                (path, digester, DigestStatus.PENDING.value, now, now),
            )
        return cursor.rowcount > 0

    def mark_in_progress(self, path: str, digester: str) -> None:
        self.create_placeholder(path, digester)
        with self.transaction() as conn:
            conn.execute(
                "UPDATE digests SET status = ?, updated_at = ? WHERE file_path = ? AND digester = ?",
                (DigestStatus.IN_PROGRESS.value, utc_now(), path, digester),
            )

    def mark_failed(self, path: str, digester: str, error: str) -> None:
        self.upsert_digest(
            DigestInput(file_path=path, digester=digester, status=DigestStatus.FAILED, error=error)
        )

    def mark_skipped(self, path: str, digester: str, reason: str) -> None:
        self.upsert_digest(
            DigestInput(file_path=path, digester=digester, status=DigestStatus.SKIPPED, error=reason)
        )

    def upsert_digest(self, digest: DigestInput) -> DigestRecord:
        """Write a digester result.

        Completed and skipped rows reset the attempt counter; failed rows
        increment it, capped at ``max_attempts``. A failure keeps whatever
        content the previous successful run left behind.
        """
        self.create_placeholder(digest.file_path, digest.digester)
        status = DigestStatus(digest.status)
        now = utc_now()
        with self.transaction() as conn:
            if status is DigestStatus.FAILED:
                conn.execute(
                    """
                    UPDATE digests
                    SET status = ?, error = ?, attempts = MIN(attempts + 1, ?), updated_at = ?
                    WHERE file_path = ? AND digester = ?
                    """,
                    (status.value, digest.error, self.max_attempts, now, digest.file_path, digest.digester),
                )
            else:
                attempts_sql = "0" if status.is_terminal else "attempts"
                conn.execute(
                    f"""
                    UPDATE digests
                    SET status = ?, content = ?, error = ?, attempts = {attempts_sql}, updated_at = ?
                    WHERE file_path = ? AND digester = ?
                    """,
                    (status.value, digest.content, digest.error, now, digest.file_path, digest.digester),
                )
        record = self.get_digest_by_path_and_digester(digest.file_path, digest.digester)
        if record is None:
            raise StoreError(f"Digest {digest.digester} for {digest.file_path} vanished after write")
        return record

    def reset_digests(self, path: str, digesters: Sequence[str]) -> int:
        """Put the named digests back to pending with content, error and attempts cleared."""
        if not digesters:
            return 0
        placeholders = ", ".join("?" for _ in digesters)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE digests
                SET status = ?, content = NULL, error = NULL, attempts = 0, updated_at = ?
                WHERE file_path = ? AND digester IN ({placeholders})
                """,
                (DigestStatus.PENDING.value, utc_now(), path, *digesters),
            )
        return cursor.rowcount

    def reset_stale_in_progress_digests(self, cutoff: datetime | str) -> int:
        """Force in-progress rows not updated since ``cutoff`` back to pending."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE digests
                SET status = ?, error = NULL, updated_at = ?
                WHERE status = ? AND updated_at < ?
                """,
                (DigestStatus.PENDING.value, utc_now(), DigestStatus.IN_PROGRESS.value, _cutoff(cutoff)),
            )
        return cursor.rowcount

    def has_failed_digests(self, path: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM digests WHERE file_path = ? AND status = ? LIMIT 1",
            (path, DigestStatus.FAILED.value),
        ).fetchone()
        return row is not None

    def count_by_status(self) -> Dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS total FROM digests GROUP BY status"
        ).fetchall()
        return {row["status"]: row["total"] for row in rows}

    # Locks

    def is_locked(self, path: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM processing_locks WHERE file_path = ?", (path,)
        ).fetchone()
        return row is not None

    def acquire_lock(self, path: str) -> bool:
        """Take the processing lock for ``path``. Returns False if already held."""
        try:
            with self.transaction() as conn:
                conn.execute(
                    "INSERT INTO processing_locks(file_path, owner, acquired_at) VALUES (?, ?, ?)",
                    (path, self.owner, utc_now()),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def release_lock(self, path: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM processing_locks WHERE file_path = ?", (path,))

    def cleanup_stale_locks(self, older_than: float) -> int:
        """Remove locks whose holder is gone.

        Owners on this host are checked by pid alone, however old the lock is.
        Owners elsewhere cannot be checked, so their locks expire after
        ``older_than`` seconds.
        """
        cutoff = to_timestamp(datetime.now(timezone.utc) - timedelta(seconds=older_than))
        host = socket.gethostname()
        stale: List[str] = []
        for row in self._conn.execute("SELECT * FROM processing_locks").fetchall():
            owner_host, _, pid = row["owner"].rpartition(":")
            if owner_host == host and pid.isdigit():
                if not _pid_alive(int(pid)):
                    stale.append(row["file_path"])
            elif row["acquired_at"] < cutoff:
                stale.append(row["file_path"])

        if stale:
            with self.transaction() as conn:
                conn.executemany(
                    "DELETE FROM processing_locks WHERE file_path = ?",
                    [(path,) for path in stale],
                )
            LOGGER.info("Cleared %d stale processing locks", len(stale))
        return len(stale)


def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        path=row["path"],
        name=row["name"],
        is_folder=bool(row["is_folder"]),
        mime_type=row["mime_type"],
        size=row["size"],
        hash=row["hash"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
        last_scanned_at=row["last_scanned_at"],
    )


def _row_to_digest(row: sqlite3.Row) -> DigestRecord:
    return DigestRecord(
        id=row["id"],
        file_path=row["file_path"],
        digester=row["digester"],
        status=DigestStatus(row["status"]),
        content=row["content"],
        error=row["error"],
        attempts=row["attempts"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
