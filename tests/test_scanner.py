"""Tests for data root scanning."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from lifedigest.digest.scanner import FileChangeEvent, scan_data_root


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    root = tmp_path / "data"
    (root / "notes").mkdir(parents=True)
    (root / "notes" / "a.md").write_text("alpha", encoding="utf-8")
    (root / "photo.jpg").write_bytes(b"\xff\xd8")
    (root / ".lifedigest").mkdir()
    (root / ".lifedigest" / "lifedigest.db").write_bytes(b"")
    (root / ".hidden.txt").write_text("secret", encoding="utf-8")
    return root


class TestScanDataRoot:
    """File record synchronisation."""

    def test_first_scan_inserts_visible_files(self, store, data_root: Path) -> None:
        stats = scan_data_root(store, data_root)

        assert stats.inserted == 2
        assert [f.path for f in store.list_files()] == ["notes/a.md", "photo.jpg"]
        record = store.get_file("notes/a.md")
        assert record.mime_type == "text/markdown"
        assert record.size == 5
        assert record.hash
        assert record.last_scanned_at is not None
        assert FileChangeEvent("photo.jpg", is_new=True, content_changed=False) in stats.changes

    def test_rescan_detects_changes(self, store, data_root: Path) -> None:
        scan_data_root(store, data_root)
        created_at = store.get_file("notes/a.md").created_at
        (data_root / "notes" / "a.md").write_text("alpha beta", encoding="utf-8")

        stats = scan_data_root(store, data_root)

        assert (stats.inserted, stats.updated, stats.unchanged) == (0, 1, 1)
        assert FileChangeEvent("notes/a.md", is_new=False, content_changed=True) in stats.changes
        assert store.get_file("notes/a.md").created_at == created_at

    def test_vanished_files_are_removed_everywhere(self, store, data_root: Path) -> None:
        scan_data_root(store, data_root)
        store.create_placeholder("photo.jpg", "image-ocr")
        (data_root / "photo.jpg").unlink()
        index = MagicMock()

        stats = scan_data_root(store, data_root, indexes=[index])

        assert stats.removed == 1
        assert store.get_file("photo.jpg") is None
        assert store.list_digests_for_path("photo.jpg") == []
        index.delete_for_file.assert_called_once_with("photo.jpg")

    def test_excluded_prefixes(self, store, data_root: Path) -> None:
        stats = scan_data_root(store, data_root, excluded_prefixes=("notes/",))
        assert [change.path for change in stats.changes] == ["photo.jpg"]
