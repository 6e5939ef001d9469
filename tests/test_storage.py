"""Tests for SQLiteDigestStore."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from lifedigest.errors import StoreError
from lifedigest.index.storage import SQLiteDigestStore, process_owner
from lifedigest.models import DigestInput, DigestStatus, FileRecord


class TestSchema:
    """Store initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLiteDigestStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_tables_exist(self, store):
        names = {
            row[0]
            for row in store.connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"files", "digests", "processing_locks"} <= names

    def test_wal_mode(self, store):
        assert store.connection.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"

    def test_unopenable_database_raises_store_error(self, tmp_path):
        with pytest.raises(StoreError):
            SQLiteDigestStore(tmp_path / "missing" / "dir" / "test.db")

    def test_transaction_rolls_back(self, store, add_file):
        add_file("a.txt")
        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                conn.execute("DELETE FROM files")
                raise RuntimeError("boom")
        assert store.get_file("a.txt") is not None


class TestFiles:
    """File record CRUD."""

    def test_upsert_and_get(self, store):
        record = FileRecord(path="docs/a.pdf", name="a.pdf", mime_type="application/pdf", size=10, hash="h1")
        store.upsert_file(record)

        loaded = store.get_file("docs/a.pdf")
        assert loaded is not None
        assert loaded.mime_type == "application/pdf"
        assert loaded.hash == "h1"
        assert loaded.extension == ".pdf"

    def test_upsert_updates_hash(self, store, add_file):
        add_file("a.txt", hash="one")
        add_file("a.txt", hash="two")
        assert store.get_file("a.txt").hash == "two"
        assert len(store.list_files()) == 1

    def test_list_files_excludes_folders(self, store, add_file):
        add_file("a.txt")
        add_file("folder", is_folder=True)
        assert [f.path for f in store.list_files()] == ["a.txt"]
        assert len(store.list_files(include_folders=True)) == 2

    def test_delete_file_removes_digests_and_lock(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        store.acquire_lock("a.txt")

        assert store.delete_file("a.txt") is True
        assert store.list_digests_for_path("a.txt") == []
        assert not store.is_locked("a.txt")
        assert store.delete_file("a.txt") is False


class TestDigests:
    """Digest record lifecycle."""

    def test_placeholder_is_idempotent(self, store, add_file):
        add_file("a.txt")
        assert store.create_placeholder("a.txt", "tags") is True
        assert store.create_placeholder("a.txt", "tags") is False

        record = store.get_digest_by_path_and_digester("a.txt", "tags")
        assert record.status is DigestStatus.PENDING
        assert record.attempts == 0

    def test_unique_per_file_and_digester(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        with pytest.raises(sqlite3.IntegrityError):
            store.connection.execute(
                "INSERT INTO digests(file_path, digester, status, attempts, created_at, updated_at)"
                " VALUES ('a.txt', 'tags', 'pending', 0, 'x', 'x')"
            )

    def test_failed_increments_attempts_capped(self, store, add_file):
        add_file("a.txt")
        for _ in range(5):
            store.mark_failed("a.txt", "tags", "boom")

        record = store.get_digest_by_path_and_digester("a.txt", "tags")
        assert record.status is DigestStatus.FAILED
        assert record.error == "boom"
        assert record.attempts == 3

    def test_completed_resets_attempts(self, store, add_file):
        add_file("a.txt")
        store.mark_failed("a.txt", "tags", "boom")
        record = store.upsert_digest(DigestInput(file_path="a.txt", digester="tags", content="x"))

        assert record.status is DigestStatus.COMPLETED
        assert record.content == "x"
        assert record.error is None
        assert record.attempts == 0

    def test_failure_keeps_previous_content(self, store, add_file):
        add_file("a.txt")
        store.upsert_digest(DigestInput(file_path="a.txt", digester="tags", content="old"))
        store.mark_failed("a.txt", "tags", "boom")
        assert store.get_digest_by_path_and_digester("a.txt", "tags").content == "old"

    def test_vanished_row_raises_store_error(self, store, add_file, monkeypatch):
        add_file("a.txt")
        monkeypatch.setattr(store, "get_digest_by_path_and_digester", lambda path, digester: None)

        with pytest.raises(StoreError, match="vanished"):
            store.upsert_digest(DigestInput(file_path="a.txt", digester="tags", content="x"))

    def test_mark_skipped(self, store, add_file):
        add_file("a.txt")
        store.mark_skipped("a.txt", "legacy", "Digester not registered")
        record = store.get_digest_by_path_and_digester("a.txt", "legacy")
        assert record.status is DigestStatus.SKIPPED
        assert record.error == "Digester not registered"

    def test_reset_digests(self, store, add_file):
        add_file("a.txt")
        store.upsert_digest(DigestInput(file_path="a.txt", digester="tags", content="x"))
        store.mark_failed("a.txt", "search-keyword", "boom")

        assert store.reset_digests("a.txt", ["tags", "search-keyword"]) == 2
        for record in store.list_digests_for_path("a.txt"):
            assert record.status is DigestStatus.PENDING
            assert record.content is None
            assert record.error is None
            assert record.attempts == 0
        assert store.reset_digests("a.txt", []) == 0

    def test_has_failed_digests(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        assert not store.has_failed_digests("a.txt")
        store.mark_failed("a.txt", "tags", "boom")
        assert store.has_failed_digests("a.txt")

    def test_count_by_status(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        store.mark_failed("a.txt", "search-keyword", "boom")
        assert store.count_by_status() == {"pending": 1, "failed": 1}


class TestStaleDigests:
    """Recovery of in-progress rows left behind by a crash."""

    def test_resets_only_old_in_progress_rows(self, store, add_file):
        add_file("a.txt")
        store.mark_in_progress("a.txt", "tags")
        store.connection.execute(
            "UPDATE digests SET updated_at = '2000-01-01T00:00:00.000Z' WHERE digester = 'tags'"
        )
        store.connection.commit()
        store.mark_in_progress("a.txt", "search-keyword")

        cutoff = datetime.now(timezone.utc) - timedelta(minutes=10)
        assert store.reset_stale_in_progress_digests(cutoff) == 1

        assert store.get_digest_by_path_and_digester("a.txt", "tags").status is DigestStatus.PENDING
        assert (
            store.get_digest_by_path_and_digester("a.txt", "search-keyword").status
            is DigestStatus.IN_PROGRESS
        )


class TestFindFilesNeedingDigestion:
    """Selection of the next files to process."""

    def test_pending_and_retriable_failed(self, store, add_file):
        add_file("a.txt", created_at="2024-01-01T00:00:00.000Z")
        add_file("b.txt", created_at="2024-01-02T00:00:00.000Z")
        add_file("c.txt", created_at="2024-01-03T00:00:00.000Z")
        store.create_placeholder("a.txt", "tags")
        store.mark_failed("b.txt", "tags", "boom")
        store.upsert_digest(DigestInput(file_path="c.txt", digester="tags", content="x"))

        assert store.find_files_needing_digestion(10) == ["a.txt", "b.txt"]
        assert store.find_files_needing_digestion(1) == ["a.txt"]

    def test_exhausted_failures_are_left_out(self, store, add_file):
        add_file("a.txt")
        for _ in range(3):
            store.mark_failed("a.txt", "tags", "boom")
        assert store.find_files_needing_digestion(10) == []

    def test_files_with_in_progress_digest_are_left_out(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        store.mark_in_progress("a.txt", "search-keyword")
        assert store.find_files_needing_digestion(10) == []

    def test_folders_and_excluded_prefixes(self, tmp_path):
        store = SQLiteDigestStore(tmp_path / "x.db", excluded_path_prefixes=(".lifedigest/",))
        try:
            store.upsert_file(FileRecord(path="folder", name="folder", is_folder=True))
            store.upsert_file(FileRecord(path=".lifedigest/cache.txt", name="cache.txt"))
            store.upsert_file(FileRecord(path="ok.txt", name="ok.txt"))
            for path in ("folder", ".lifedigest/cache.txt", "ok.txt"):
                store.create_placeholder(path, "tags")

            assert store.find_files_needing_digestion(10) == ["ok.txt"]
        finally:
            store.close()

    def test_grouped_by_path(self, store, add_file):
        add_file("a.txt")
        store.create_placeholder("a.txt", "tags")
        store.create_placeholder("a.txt", "search-keyword")
        assert store.find_files_needing_digestion(10) == ["a.txt"]


class TestLocks:
    """Per-file processing locks."""

    def test_only_one_acquirer_wins(self, tmp_path):
        db_path = tmp_path / "locks.db"
        first = SQLiteDigestStore(db_path, owner="host:1")
        second = SQLiteDigestStore(db_path, owner="host:2")
        try:
            assert first.acquire_lock("a.txt") is True
            assert second.acquire_lock("a.txt") is False
            assert second.is_locked("a.txt") is True

            first.release_lock("a.txt")
            assert second.acquire_lock("a.txt") is True
        finally:
            first.close()
            second.close()

    def test_old_lock_of_live_local_owner_is_kept(self, tmp_path):
        db_path = tmp_path / "locks.db"
        holder = SQLiteDigestStore(db_path)
        sweeper = SQLiteDigestStore(db_path, owner="sweeper:1")
        try:
            holder.acquire_lock("a.txt")
            holder.connection.execute(
                "UPDATE processing_locks SET acquired_at = '2000-01-01T00:00:00.000Z'"
            )
            holder.connection.commit()

            assert sweeper.cleanup_stale_locks(older_than=300) == 0
            assert sweeper.is_locked("a.txt")
            assert sweeper.acquire_lock("a.txt") is False
        finally:
            holder.close()
            sweeper.close()

    def test_old_lock_from_other_host_expires(self, tmp_path):
        store = SQLiteDigestStore(tmp_path / "remote.db", owner="otherhost:42")
        try:
            store.acquire_lock("a.txt")
            store.connection.execute(
                "UPDATE processing_locks SET acquired_at = '2000-01-01T00:00:00.000Z'"
            )
            store.connection.commit()
            store.acquire_lock("b.txt")

            assert store.cleanup_stale_locks(older_than=300) == 1
            assert not store.is_locked("a.txt")
            assert store.is_locked("b.txt")
        finally:
            store.close()

    def test_cleanup_dead_local_owner(self, tmp_path, monkeypatch):
        import socket

        monkeypatch.setattr(socket, "gethostname", lambda: "testhost")
        store = SQLiteDigestStore(tmp_path / "dead.db", owner="testhost:999999")
        try:
            monkeypatch.setattr("lifedigest.index.storage._pid_alive", lambda pid: False)
            store.acquire_lock("a.txt")
            assert store.cleanup_stale_locks(older_than=300) == 1
        finally:
            store.close()

    def test_live_owner_is_kept(self, store):
        assert store.owner == process_owner()
        store.acquire_lock("a.txt")
        assert store.cleanup_stale_locks(older_than=300) == 0
        assert store.is_locked("a.txt")
