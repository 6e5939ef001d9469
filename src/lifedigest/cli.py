"""Command line interface for LifeDigest."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from lifedigest.config import AppConfig
from lifedigest.digest.base import DigestContext
from lifedigest.digest.coordinator import DigestCoordinator
from lifedigest.digest.registry import build_default_registry
from lifedigest.digest.scanner import scan_data_root
from lifedigest.digest.worker import run_worker
from lifedigest.errors import LifeDigestError
from lifedigest.index.keyword import SQLiteKeywordStore
from lifedigest.index.vectors import SQLiteVectorStore
from lifedigest.models import DigestStatus
from lifedigest.runtime import build_coordinator, build_searcher, ensure_db_parent, open_store

console = Console()
app = typer.Typer(help="LifeDigest - digest and search your personal files")

_STATUS_STYLES = {
    DigestStatus.PENDING: "yellow",
    DigestStatus.IN_PROGRESS: "cyan",
    DigestStatus.COMPLETED: "green",
    DigestStatus.FAILED: "red",
    DigestStatus.SKIPPED: "dim",
}

DbOption = typer.Option(None, "--db", help="SQLite database path")
DataRootOption = typer.Option(None, "--data-root", help="Root folder of your files")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _config(db: Optional[Path], data_root: Optional[Path]) -> AppConfig:
    return AppConfig.from_env(db_path=db, data_root=data_root)


def _require_db(config: AppConfig) -> Path:
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return resolved_db


@app.command()
def scan(
    root: Path = typer.Argument(..., help="Folder to scan", exists=True, file_okay=False, resolve_path=True),
    db: Path = DbOption,
    verbose: bool = VerboseOption,
) -> None:
    """Record every file under ROOT and create pending digests for it."""
    _setup_logging(verbose)
    config = _config(db, root)
    store = open_store(config)
    db_path = config.resolve_db_path()
    keywords = SQLiteKeywordStore(db_path)
    vectors = SQLiteVectorStore(db_path)
    try:
        console.print(f"Scanning [bold]{root}[/bold] into [bold]{db_path}[/bold]...")
        stats = scan_data_root(store, root, indexes=(keywords, vectors))

        # Placeholders only need capability checks, so no vendors or embedder here.
        coordinator = DigestCoordinator(store, build_default_registry(DigestContext(data_root=root)))
        created = 0
        for change in stats.changes:
            created += coordinator.ensure_all_digesters(change.path)
            if change.content_changed:
                store.reset_digests(
                    change.path, [record.digester for record in store.list_digests_for_path(change.path)]
                )
    finally:
        keywords.close()
        vectors.close()
        store.close()

    console.print(
        f"New: {stats.inserted}, changed: {stats.updated}, unchanged: {stats.unchanged}, "
        f"removed: {stats.removed}, failed: {stats.failed}, placeholders: {created}"
    )


@app.command()
def digest(
    path: str = typer.Argument(..., help="File path relative to the data root"),
    reset: bool = typer.Option(False, "--reset", help="Re-run digesters that already completed"),
    digester: Optional[str] = typer.Option(None, "--digester", help="Run only this digester"),
    db: Path = DbOption,
    data_root: Path = DataRootOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run the digest pipeline for one file now."""
    _setup_logging(verbose)
    config = _config(db, data_root)
    _require_db(config)
    store = open_store(config)
    try:
        if store.get_file(path) is None:
            raise typer.BadParameter(f"Unknown file: {path}. Run 'lifedigest scan' first.")
        if not store.acquire_lock(path):
            console.print(f"[yellow]{path} is being processed by another worker.[/yellow]")
            raise typer.Exit(1)
        coordinator = None
        try:
            coordinator = build_coordinator(config, store)
            coordinator.ensure_all_digesters(path)
            result = asyncio.run(coordinator.process_file(path, reset=reset, digester=digester))
        finally:
            if coordinator is not None:
                coordinator.close()
            store.release_lock(path)
        _print_digests(store, path)
    finally:
        store.close()

    console.print(
        f"Processed: {result.processed}, skipped: {result.skipped}, failed: {result.failed}"
    )
    if result.failed:
        raise typer.Exit(1)


@app.command()
def worker(
    db: Path = DbOption,
    data_root: Path = DataRootOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run the background digest worker until interrupted."""
    _setup_logging(verbose)
    config = _config(db, data_root)
    console.print(f"Digest worker on [bold]{config.resolve_db_path()}[/bold] (Ctrl+C to stop)")
    try:
        run_worker(config)
    except LifeDigestError as exc:
        console.print(f"[red]Worker failed to start: {exc}[/red]")
        raise typer.Exit(1) from exc
    except Exception as exc:
        logging.getLogger(__name__).exception("Digest worker crashed")
        raise typer.Exit(1) from exc


@app.command()
def status(
    path: Optional[str] = typer.Argument(None, help="Show digests of a single file"),
    db: Path = DbOption,
    data_root: Path = DataRootOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show digest status, overall or for one file."""
    _setup_logging(verbose)
    config = _config(db, data_root)
    _require_db(config)
    store = open_store(config)
    try:
        if path is not None:
            if store.get_file(path) is None:
                raise typer.BadParameter(f"Unknown file: {path}")
            _print_digests(store, path)
            return

        counts = store.count_by_status()
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Status")
        table.add_column("Digests", justify="right")
        for digest_status in DigestStatus:
            style = _STATUS_STYLES[digest_status]
            table.add_row(
                f"[{style}]{digest_status.value}[/{style}]", str(counts.get(digest_status.value, 0))
            )
        console.print(f"Files: {len(store.list_files())}")
        console.print(table)
    finally:
        store.close()


def _print_digests(store, path: str) -> None:
    table = Table(title=path, show_header=True, header_style="bold magenta")
    table.add_column("Digester")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Updated")
    table.add_column("Error")
    for record in store.list_digests_for_path(path):
        style = _STATUS_STYLES[record.status]
        table.add_row(
            record.digester,
            f"[{style}]{record.status.value}[/{style}]",
            str(record.attempts),
            record.updated_at,
            (record.error or "")[:80],
        )
    console.print(table)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, help="Number of results to display"),
    keyword_weight: float = typer.Option(0.5, help="Weight of keyword matches"),
    semantic_weight: float = typer.Option(0.5, help="Weight of semantic matches"),
    db: Path = DbOption,
    data_root: Path = DataRootOption,
    verbose: bool = VerboseOption,
) -> None:
    """Hybrid keyword and semantic search over digested files."""
    _setup_logging(verbose)
    config = _config(db, data_root)
    _require_db(config)

    searcher = build_searcher(config)
    try:
        response = searcher.search(
            query, limit=limit, keyword_weight=keyword_weight, semantic_weight=semantic_weight
        )
    finally:
        searcher.close()

    if not response.results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("File")
    table.add_column("Sources")
    table.add_column("Snippet")
    for result in response.results:
        sources = "+".join(
            name for name, flag in (("keyword", result.from_keyword), ("semantic", result.from_semantic)) if flag
        )
        snippet = result.text.replace("\n", " ")
        table.add_row(f"{result.score:.4f}", result.file_path, sources, snippet[:180])
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = DbOption,
    data_root: Path = DataRootOption,
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from lifedigest.web.app import app as web_app
    from lifedigest.web.app import configure as configure_web

    config = _config(db, data_root)
    resolved_db = config.resolve_db_path(Path.cwd())
    ensure_db_parent(resolved_db)
    configure_web(db_path=resolved_db, data_root=config.data_root)
    if not resolved_db.exists():
        console.print("[yellow]Warning: database not found, searches might fail.[/yellow]")

    console.print(f"Starting web API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")
