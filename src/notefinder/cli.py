"""Command line interface for NoteFinder."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from notefinder.config import AppConfig
from notefinder.errors import NoteFinderError
from notefinder.search.types import SearchOptions, SearchResult
from notefinder.service import NoteFinder
from notefinder.web.app import app as web_app

console = Console()
app = typer.Typer(help="NoteFinder - hybrid keyword and semantic search for markdown notes")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(
    model: str | None = None,
    cache_dir: Path | None = None,
    exclude: Optional[List[str]] = None,
    semantic: bool = True,
) -> AppConfig:
    config = AppConfig()
    if model:
        config.model_name = model
    if cache_dir is not None:
        config.cache_dir = cache_dir
    if exclude:
        config.exclude_patterns = [*config.exclude_patterns, *exclude]
    config.semantic.enabled = semantic
    return config


def _results_table(results: List[SearchResult]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Note")
    table.add_column("Source")
    table.add_column("Why")
    table.add_column("Excerpt")
    for result in results:
        excerpt = result.excerpt.replace("\n", " ")
        note = result.doc_id
        if result.cluster_size > 1:
            note = f"{note} (+{result.cluster_size - 1} related)"
        table.add_row(
            f"{result.final_score:.3f}",
            note,
            result.source,
            result.matches.reason,
            excerpt[:120],
        )
    return table


@app.command()
def index(
    root: Path = typer.Argument(..., help="Notes directory to index.", resolve_path=True),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    cache_dir: Path = typer.Option(None, "--cache-dir", help="Where to keep index caches"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Glob of notes to skip"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index a directory of markdown notes."""
    _setup_logging(verbose)
    if not root.is_dir():
        raise typer.BadParameter(f"Not a directory: {root}")
    config = _build_config(model, cache_dir, exclude)

    async def run() -> None:
        finder = NoteFinder(root, config)
        console.print(f"Indexing notes in [bold]{root}[/bold]...")
        try:
            stats = await finder.open()
            graph = finder.graph.stats()
        finally:
            finder.close()
        console.print(
            f"Embedded: {stats.indexed}, unchanged: {stats.unchanged}, "
            f"excluded: {stats.excluded}, empty: {stats.empty}, failed: {stats.failed}"
        )
        console.print(f"Link graph: {graph.node_count} notes, {graph.edge_count} links")

    asyncio.run(run())


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text, may include field filters such as tag:idea"),
    root: Path = typer.Option(Path.cwd(), "--root", "-r", help="Notes directory", resolve_path=True),
    limit: int = typer.Option(10, help="Number of results to display"),
    keyword_only: bool = typer.Option(False, "--keyword-only", help="Skip semantic retrieval"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    cache_dir: Path = typer.Option(None, "--cache-dir", help="Where index caches are kept"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a hybrid search over a notes directory."""
    _setup_logging(verbose)
    if not root.is_dir():
        raise typer.BadParameter(f"Not a directory: {root}")
    config = _build_config(model, cache_dir, semantic=not keyword_only)

    async def run() -> List[SearchResult]:
        finder = NoteFinder(root, config)
        try:
            await finder.open()
            return await finder.search(query, SearchOptions(limit=limit))
        finally:
            finder.close()

    try:
        results = asyncio.run(run())
    except NoteFinderError as exc:
        console.print(f"[red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return
    console.print(_results_table(results))


@app.command()
def graph(
    root: Path = typer.Argument(..., help="Notes directory", resolve_path=True),
    top: int = typer.Option(10, help="Number of notes to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the most linked-to notes by PageRank."""
    _setup_logging(verbose)
    if not root.is_dir():
        raise typer.BadParameter(f"Not a directory: {root}")
    config = _build_config(semantic=False)

    async def run() -> None:
        finder = NoteFinder(root, config)
        try:
            await finder.open()
            ranked = finder.top_documents(top)
            stats = finder.graph.stats()
        finally:
            finder.close()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Rank")
        table.add_column("Score")
        table.add_column("Note")
        table.add_column("Backlinks")
        for position, node in enumerate(ranked, start=1):
            table.add_row(str(position), f"{node.score:.3f}", node.id, str(node.backlinks))
        console.print(table)
        console.print(
            f"{stats.node_count} notes, {stats.edge_count} links, "
            f"avg backlinks {stats.avg_backlinks:.2f}, max {stats.max_backlinks}"
        )

    asyncio.run(run())


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    console.print(f"Starting NoteFinder API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
