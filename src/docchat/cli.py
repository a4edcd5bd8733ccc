"""Command line interface for DocChat."""

from __future__ import annotations

import logging
import queue
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from docchat.assistant import Assistant
from docchat.config import AppConfig
from docchat.index.indexer import IndexingInProgressError
from docchat.llm.client import CHAT_STREAM, RAG_SOURCES, GenerationError
from docchat.models import ChatRequest
from docchat.web.app import app as web_app


console = Console()
app = typer.Typer(help="DocChat - chat with a local model about your own documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_data_parent(data_path: Path) -> None:
    data_path.parent.mkdir(parents=True, exist_ok=True)


def _build_config(
    directories: Optional[List[Path]] = None,
    data: Optional[Path] = None,
    **overrides,
) -> AppConfig:
    try:
        return AppConfig(
            directories=list(directories or []),
            data_path=data if data is not None else AppConfig().data_path,
            **overrides,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open(config: AppConfig) -> Assistant:
    resolved = config.resolve_data_path(Path.cwd())
    _ensure_data_parent(resolved)
    return Assistant(config, base_dir=Path.cwd())


@app.command()
def index(
    directories: List[Path] = typer.Argument(
        ..., help="Directories to index (at most 3).", resolve_path=True
    ),
    data: Path = typer.Option(None, "--data", help="Index snapshot file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Incrementally index documents under one or more directories."""
    _setup_logging(verbose)
    config = _build_config(directories, data)
    assistant = _open(config)

    console.print(f"Indexing into [bold]{assistant.snapshot.path}[/bold]...")
    try:
        stats = assistant.index()
    except IndexingInProgressError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(code=1)
    finally:
        assistant.close()

    if stats.up_to_date:
        console.print(f"[green]{stats.message}[/green]")
    else:
        console.print(stats.message)
    console.print(
        f"Indexed: {stats.indexed}, failed: {stats.failed}, skipped: {stats.skipped}, "
        f"unchanged: {stats.unchanged}, removed chunks: {stats.removed_chunks}"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    data: Path = typer.Option(None, "--data", help="Index snapshot file"),
    sensitivity: int = typer.Option(
        AppConfig().sensitivity, min=0, max=100, help="Minimum relevance, 0-100"
    ),
    top_k: int = typer.Option(AppConfig().max_results, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the chunks retrieval would add to a question."""
    _setup_logging(verbose)
    config = _build_config(data=data, sensitivity=sensitivity, max_results=top_k)
    resolved = config.resolve_data_path(Path.cwd())
    if not resolved.exists():
        raise typer.BadParameter(f"Index snapshot not found: {resolved}")

    assistant = Assistant(config, base_dir=Path.cwd())
    try:
        hits = assistant.retriever.search(query)
    finally:
        assistant.close()

    if not hits:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Terms")
    table.add_column("File")
    table.add_column("Snippet")

    for hit in hits:
        snippet = hit.chunk.content.replace("\n", " ")
        table.add_row(str(hit.score), str(hit.matched_term_count), hit.chunk.source_file, snippet[:180])

    console.print(table)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="Question for the model"),
    data: Path = typer.Option(None, "--data", help="Index snapshot file"),
    rag: bool = typer.Option(True, "--rag/--no-rag", help="Add context from indexed documents"),
    model: str = typer.Option(AppConfig().model, help="Model name"),
    base_url: str = typer.Option(AppConfig().base_url, "--url", help="Model runtime URL"),
    sensitivity: int = typer.Option(
        AppConfig().sensitivity, min=0, max=100, help="Minimum relevance, 0-100"
    ),
    think: bool = typer.Option(False, "--think", help="Ask the model to show its reasoning"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Ask a question and stream the answer."""
    _setup_logging(verbose)
    config = _build_config(data=data, model=model, base_url=base_url, sensitivity=sensitivity)
    assistant = _open(config)
    subscription = assistant.events.subscribe()
    future = assistant.submit(ChatRequest(prompt=prompt, rag_enabled=rag, think=think))

    try:
        while True:
            try:
                notification = subscription.get(timeout=0.1)
            except queue.Empty:
                if future.done():
                    break
                continue
            if notification.channel == RAG_SOURCES:
                files = ", ".join(source["file"] for source in notification.payload["sources"])
                console.print(f"[dim]Sources: {files}[/dim]")
            elif notification.channel == CHAT_STREAM:
                message = notification.payload.get("message") or {}
                if think and message.get("thinking"):
                    console.print(message["thinking"], end="", style="dim")
                if message.get("content"):
                    console.print(message["content"], end="")

        try:
            future.result()
        except GenerationError as exc:
            console.print(f"\n[red]Generation failed: {exc}[/red]")
            raise typer.Exit(code=1)
        console.print()
    finally:
        subscription.close()
        assistant.close()


@app.command()
def pull(
    name: str = typer.Argument(..., help="Model to download"),
    base_url: str = typer.Option(AppConfig().base_url, "--url", help="Model runtime URL"),
) -> None:
    """Download a model into the local runtime."""
    config = _build_config(base_url=base_url)
    assistant = Assistant(config, base_dir=Path.cwd())

    def _report(event) -> None:
        total = event.data.get("total")
        completed = event.data.get("completed")
        if total and completed is not None:
            console.print(f"{event.status}: {round(completed / total * 100)}%")
        elif event.status:
            console.print(event.status)

    try:
        ok = assistant.client.pull_model(name, on_progress=_report)
    except GenerationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        assistant.close()

    if not ok:
        console.print(f"[yellow]Pull of {name} did not report success.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Model {name} installed.[/green]")


@app.command()
def models(
    base_url: str = typer.Option(AppConfig().base_url, "--url", help="Model runtime URL"),
) -> None:
    """List models installed in the local runtime."""
    config = _build_config(base_url=base_url)
    assistant = Assistant(config, base_dir=Path.cwd())
    try:
        installed = assistant.client.list_models()
    except GenerationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        assistant.close()

    if not installed:
        console.print("[yellow]No models installed.[/yellow]")
        return
    for entry in installed:
        console.print(entry.get("name", "?"))


@app.command()
def status(
    data: Path = typer.Option(None, "--data", help="Index snapshot file"),
) -> None:
    """Show what the index currently holds."""
    config = _build_config(data=data)
    assistant = Assistant(config, base_dir=Path.cwd())
    try:
        info = assistant.status()
    finally:
        assistant.close()
    console.print(
        f"Chunks: {info['documentCount']}, files: {info['fileCount']} "
        f"(snapshot: {assistant.snapshot.path})"
    )


@app.command()
def clear(
    data: Path = typer.Option(None, "--data", help="Index snapshot file"),
) -> None:
    """Remove every indexed chunk."""
    config = _build_config(data=data)
    assistant = _open(config)
    try:
        assistant.clear()
    finally:
        assistant.close()
    console.print("RAG database cleared.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP interface."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting web interface on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
