"""Tests for CLI commands."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from lifedigest.cli import _setup_logging, app
from lifedigest.digest.coordinator import ProcessFileResult
from lifedigest.errors import StoreError
from lifedigest.index.fusion import FusedResult
from lifedigest.index.search import SearchResponse
from lifedigest.index.storage import SQLiteDigestStore
from lifedigest.runtime import ensure_db_parent

runner = CliRunner()


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    root = tmp_path / "life"
    root.mkdir()
    (root / "a.md").write_text("# Notes\n\nSome text", encoding="utf-8")
    (root / "b.txt").write_text("Other text", encoding="utf-8")
    return root


@pytest.fixture
def scanned(data_root: Path) -> Path:
    """Data root after a scan; returns the database path."""
    result = runner.invoke(app, ["scan", str(data_root)])
    assert result.exit_code == 0, result.stdout
    return data_root / ".lifedigest" / "lifedigest.db"


class TestSetupLogging:
    """Tests for _setup_logging helper."""

    def test_setup_logging_verbose(self) -> None:
        """Verbose mode sets DEBUG level."""
        with patch("lifedigest.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=True)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.DEBUG

    def test_setup_logging_normal(self) -> None:
        """Normal mode sets INFO level."""
        with patch("lifedigest.cli.logging.basicConfig") as mock_config:
            _setup_logging(verbose=False)
            mock_config.assert_called_once()
            assert mock_config.call_args[1]["level"] == logging.INFO


class TestEnsureDbParent:
    """Tests for ensure_db_parent helper."""

    def test_creates_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "subdir" / "test.db"
        ensure_db_parent(db_path)
        assert db_path.parent.exists()

    def test_existing_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        ensure_db_parent(db_path)
        assert db_path.parent.exists()


class TestScanCommand:
    """Tests for the scan command."""

    def test_scan_creates_records_and_placeholders(self, data_root: Path, scanned: Path) -> None:
        store = SQLiteDigestStore(scanned)
        try:
            assert [f.path for f in store.list_files()] == ["a.md", "b.txt"]
            names = {record.digester for record in store.list_digests_for_path("a.md")}
            assert names == {"tags", "search-keyword", "search-semantic"}
        finally:
            store.close()

    def test_rescan_reports_changes(self, data_root: Path, scanned: Path) -> None:
        (data_root / "a.md").write_text("changed", encoding="utf-8")
        (data_root / "b.txt").unlink()

        result = runner.invoke(app, ["scan", str(data_root)])

        assert result.exit_code == 0
        assert "changed: 1" in result.stdout
        assert "removed: 1" in result.stdout

    def test_scan_missing_root(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["scan", str(tmp_path / "nope")])
        assert result.exit_code != 0


class TestStatusCommand:
    """Tests for the status command."""

    def test_database_not_found(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["status", "--db", str(tmp_path / "missing.db")])
        assert result.exit_code != 0
        assert "Database not found" in result.output

    def test_overall_counts(self, scanned: Path) -> None:
        result = runner.invoke(app, ["status", "--db", str(scanned)])

        assert result.exit_code == 0
        assert "Files: 2" in result.stdout
        assert "pending" in result.stdout

    def test_single_file(self, scanned: Path) -> None:
        result = runner.invoke(app, ["status", "a.md", "--db", str(scanned)])

        assert result.exit_code == 0
        assert "search-keyword" in result.stdout

    def test_unknown_file(self, scanned: Path) -> None:
        result = runner.invoke(app, ["status", "zzz.md", "--db", str(scanned)])
        assert result.exit_code != 0


class TestDigestCommand:
    """Tests for the digest command."""

    def _coordinator(self, result: ProcessFileResult) -> MagicMock:
        coordinator = MagicMock()
        coordinator.process_file = AsyncMock(return_value=result)
        return coordinator

    @patch("lifedigest.cli.build_coordinator")
    def test_digest_success(self, mock_build: MagicMock, data_root: Path, scanned: Path) -> None:
        coordinator = self._coordinator(ProcessFileResult(processed=3))
        mock_build.return_value = coordinator

        result = runner.invoke(
            app,
            ["digest", "a.md", "--db", str(scanned), "--data-root", str(data_root), "--reset"],
        )

        assert result.exit_code == 0, result.stdout
        assert "Processed: 3" in result.stdout
        coordinator.ensure_all_digesters.assert_called_once_with("a.md")
        coordinator.process_file.assert_awaited_once_with("a.md", reset=True, digester=None)
        coordinator.close.assert_called_once()

    @patch("lifedigest.cli.build_coordinator")
    def test_digest_failure_exit_code(self, mock_build: MagicMock, scanned: Path) -> None:
        mock_build.return_value = self._coordinator(ProcessFileResult(processed=1, failed=1))

        result = runner.invoke(app, ["digest", "a.md", "--db", str(scanned), "--digester", "tags"])

        assert result.exit_code == 1
        assert "failed: 1" in result.stdout

    @patch("lifedigest.cli.build_coordinator")
    def test_locked_file(self, mock_build: MagicMock, scanned: Path) -> None:
        other = SQLiteDigestStore(scanned, owner="elsewhere:1")
        try:
            other.acquire_lock("a.md")
            result = runner.invoke(app, ["digest", "a.md", "--db", str(scanned)])
        finally:
            other.close()

        assert result.exit_code == 1
        assert "being processed" in result.stdout
        mock_build.assert_not_called()

    def test_unknown_file(self, scanned: Path) -> None:
        result = runner.invoke(app, ["digest", "missing.md", "--db", str(scanned)])
        assert result.exit_code != 0
        assert "Unknown file" in result.output


class TestWorkerCommand:
    """Tests for the worker command."""

    @patch("lifedigest.cli.run_worker")
    def test_runs_worker(self, mock_run: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(app, ["worker", "--data-root", str(tmp_path)])

        assert result.exit_code == 0
        config = mock_run.call_args[0][0]
        assert config.data_root == tmp_path

    @patch("lifedigest.cli.run_worker")
    def test_store_failure(self, mock_run: MagicMock, tmp_path: Path) -> None:
        mock_run.side_effect = StoreError("Unable to open database")

        result = runner.invoke(app, ["worker", "--data-root", str(tmp_path)])

        assert result.exit_code == 1
        assert "Worker failed to start" in result.stdout


class TestSearchCommand:
    """Tests for the search command."""

    def test_database_not_found(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["search", "test", "--db", str(tmp_path / "missing.db")])
        assert result.exit_code != 0

    @patch("lifedigest.cli.build_searcher")
    def test_no_results(self, mock_build: MagicMock, scanned: Path) -> None:
        mock_build.return_value.search.return_value = SearchResponse()

        result = runner.invoke(app, ["search", "nothing", "--db", str(scanned)])

        assert result.exit_code == 0
        assert "No matches found" in result.stdout
        mock_build.return_value.close.assert_called_once()

    @patch("lifedigest.cli.build_searcher")
    def test_with_results(self, mock_build: MagicMock, scanned: Path) -> None:
        mock_build.return_value.search.return_value = SearchResponse(
            results=[
                FusedResult(
                    key="a.md",
                    file_path="a.md",
                    score=0.0164,
                    text="Some text",
                    from_keyword=True,
                    from_semantic=True,
                )
            ],
            keyword_count=1,
            semantic_count=1,
        )

        result = runner.invoke(
            app, ["search", "text", "--db", str(scanned), "--limit", "3", "--keyword-weight", "0.7"]
        )

        assert result.exit_code == 0
        assert "a.md" in result.stdout
        assert "keyword+semantic" in result.stdout
        kwargs = mock_build.return_value.search.call_args.kwargs
        assert kwargs["limit"] == 3
        assert kwargs["keyword_weight"] == 0.7


class TestWebCommand:
    """Tests for the web command."""

    def test_web_starts_server(self, scanned: Path, data_root: Path) -> None:
        with patch("uvicorn.run") as mock_uvicorn_run, patch(
            "lifedigest.web.app.configure"
        ) as mock_configure:
            result = runner.invoke(
                app,
                ["web", "--db", str(scanned), "--data-root", str(data_root), "--port", "9000"],
            )

        assert result.exit_code == 0
        mock_configure.assert_called_once_with(db_path=scanned, data_root=data_root)
        call_kwargs = mock_uvicorn_run.call_args[1]
        assert call_kwargs["port"] == 9000
        assert call_kwargs["host"] == "127.0.0.1"

    def test_web_warns_missing_database(self, tmp_path: Path) -> None:
        with patch("uvicorn.run"), patch("lifedigest.web.app.configure"):
            result = runner.invoke(app, ["web", "--db", str(tmp_path / "none" / "x.db")])

        assert result.exit_code == 0
        assert "database not found" in result.stdout
