"""smartctx CLI: Typer + Rich terminal interface.

Commands: discover, detect, preview, cache, config.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from smartctx import __version__
from smartctx.context.cache import DEFAULT_CACHE_PATH, ContextCache
from smartctx.context.chunker import parse_chunking_strategy
from smartctx.context.config import CONFIG_FILE_NAME, discover_config, write_default_config
from smartctx.context.smart import SmartContext
from smartctx.errors import CacheError, InvalidChunkStrategyError, ProjectPathError
from smartctx.schemas.config import ContextConfig, DiscoveryRequest
from smartctx.schemas.context import DiscoveryResult

console = Console()

T = TypeVar("T")

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="smartctx",
    help="Pick the files worth sending to a language model, within a token budget.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

cache_app = typer.Typer(
    name="cache",
    help="Inspect and manage the scan cache.",
    no_args_is_help=True,
)
app.add_typer(cache_app, name="cache")

config_app = typer.Typer(
    name="config",
    help="Show or create project configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"smartctx {__version__}")
        raise typer.Exit()


# ── App Callback ────────────────────────────────────────────────


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log discovery progress to stderr.",
    ),
) -> None:
    """smartctx: smart context discovery for LLM prompts."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
            force=True,
        )


# ── Helpers ──────────────────────────────────────────────────────


def _load_config(path: Path) -> ContextConfig:
    """Load project configuration, exit if the directory is missing."""
    if not path.is_dir():
        console.print(f"[red]Error:[/red] Project path is not a directory: {path}")
        raise typer.Exit(1) from None
    return discover_config(path)


def _cache_from_config(config: ContextConfig) -> ContextCache:
    settings = config.context
    max_age = settings.cache_max_age_hours
    return ContextCache(
        settings.cache_path or DEFAULT_CACHE_PATH,
        timedelta(hours=max_age) if max_age is not None else None,
    )


def _make_cache(config: ContextConfig, no_cache: bool = False) -> ContextCache | None:
    if no_cache or not config.context.enable_cache:
        return None
    return _cache_from_config(config)


def _run_discovery(
    path: Path,
    request: DiscoveryRequest,
    no_cache: bool = False,
) -> tuple[SmartContext, DiscoveryResult]:
    """Run one discovery request, exit with an error line on bad input."""
    config = _load_config(path)
    cache = _make_cache(config, no_cache)
    smart = SmartContext(config, cache)

    async def _discover() -> DiscoveryResult:
        try:
            return await smart.discover(request)
        finally:
            if cache is not None:
                await cache.close()

    try:
        return smart, asyncio.run(_discover())
    except (ProjectPathError, InvalidChunkStrategyError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _print_warnings(result: DiscoveryResult) -> None:
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def _print_file(path: str, content: str, truncated: bool) -> None:
    title = f"{path} [dim](truncated)[/dim]" if truncated else path
    console.rule(title)
    console.print(content, markup=False, highlight=False, soft_wrap=True)


# ── smartctx discover ───────────────────────────────────────────


@app.command()
def discover(
    path: Path = typer.Argument(Path("."), help="Project directory"),
    query: str = typer.Option(None, "--query", "-q", help="Free-text query to rank by"),
    max_tokens: int = typer.Option(None, "--max-tokens", "-t", help="Token budget override"),
    chunked: bool = typer.Option(False, "--chunked", help="Split the project into chunks"),
    chunk_strategy: str = typer.Option(
        None, "--chunk-strategy",
        help="module, functional, token or hierarchical",
    ),
    preview: bool = typer.Option(False, "--preview", help="Show the selection summary only"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the scan cache"),
    json_output: bool = typer.Option(False, "--json", help="Emit the result as JSON"),
) -> None:
    """Select relevant files and print their contents."""
    if chunk_strategy is not None:
        try:
            parse_chunking_strategy(chunk_strategy)
        except InvalidChunkStrategyError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from None

    request = DiscoveryRequest(
        root_path=str(path),
        query=query,
        max_tokens=max_tokens,
        chunking_enabled=chunked or chunk_strategy is not None,
        chunk_strategy=chunk_strategy,
    )
    smart, result = _run_discovery(path, request, no_cache)

    if json_output:
        console.print_json(data=result.model_dump(mode="json"))
        return

    _print_warnings(result)

    if result.chunks:
        table = Table(title=f"Context Chunks ({len(result.chunks)})")
        table.add_column("#", justify="right", style="dim")
        table.add_column("Chunk", style="cyan")
        table.add_column("Type")
        table.add_column("Files", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Priority", justify="right")
        for i, chunk in enumerate(result.chunks, 1):
            table.add_row(
                str(i),
                chunk.name,
                chunk.chunk_type.value,
                str(len(chunk.files)),
                f"~{chunk.estimated_tokens}",
                f"{chunk.priority:.2f}",
            )
        console.print(table)
        if not preview:
            for chunk in result.chunks:
                console.print()
                console.print(Panel(chunk.description, title=chunk.name, border_style="cyan"))
                for f in chunk.files:
                    _print_file(f.path, f.content, f.truncated)
        return

    if preview:
        console.print(
            smart.preview_context_selection(result.selections, result.token_budget),
            markup=False,
            highlight=False,
        )
        return

    for f in result.files:
        _print_file(f.path, f.content, f.truncated)

    source = " (cached scan)" if result.from_cache else ""
    console.print(
        f"\n[dim]{len(result.files)} files, ~{result.total_tokens}/"
        f"{result.token_budget} tokens{source}[/dim]"
    )


# ── smartctx preview ────────────────────────────────────────────


@app.command()
def preview(
    path: Path = typer.Argument(Path("."), help="Project directory"),
    query: str = typer.Option(None, "--query", "-q", help="Free-text query to rank by"),
    max_tokens: int = typer.Option(None, "--max-tokens", "-t", help="Token budget override"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Bypass the scan cache"),
) -> None:
    """Show which files would be selected, without their contents."""
    request = DiscoveryRequest(root_path=str(path), query=query, max_tokens=max_tokens)
    smart, result = _run_discovery(path, request, no_cache)
    _print_warnings(result)
    console.print(
        smart.preview_context_selection(result.selections, result.token_budget),
        markup=False,
        highlight=False,
    )


# ── smartctx detect ─────────────────────────────────────────────


@app.command()
def detect(
    path: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Show the detected project type, entry points and key files."""
    config = _load_config(path)
    try:
        info = SmartContext(config).detect_project(path)
    except ProjectPathError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if info is None:
        console.print("[dim]No known project type detected.[/dim]")
        return

    table = Table(title="Project Detection", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Type", info.project_type.value)
    table.add_row("Root", info.root_path)
    table.add_row("Confidence", f"{info.confidence:.0%}")
    table.add_row("Entry Points", "\n".join(info.entry_points) or "-")
    table.add_row("Important Files", "\n".join(info.important_files) or "-")
    console.print(table)


# ── smartctx cache ──────────────────────────────────────────────


def _cache_for(path: Path) -> ContextCache:
    """The cache a project's configuration points at."""
    config = discover_config(path) if path.is_dir() else ContextConfig()
    return _cache_from_config(config)


def _run_cache(cache: ContextCache, action: Callable[[ContextCache], Awaitable[T]]) -> T:
    async def _go() -> T:
        try:
            await cache.open()
            return await action(cache)
        finally:
            await cache.close()

    try:
        return asyncio.run(_go())
    except CacheError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


@cache_app.command("stats")
def cache_stats(
    path: Path = typer.Argument(Path("."), help="Project whose cache settings to use"),
) -> None:
    """Show cache location and entry count."""
    stats = _run_cache(_cache_for(path), lambda c: c.stats())

    table = Table(title="Context Cache", show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Database", stats.db_path)
    table.add_row("Entries", str(stats.entry_count))
    console.print(table)


@cache_app.command("clear")
def cache_clear(
    path: Path = typer.Argument(Path("."), help="Project whose cache settings to use"),
) -> None:
    """Remove every cached scan."""
    removed = _run_cache(_cache_for(path), lambda c: c.clear())
    console.print(f"[green]Cleared {removed} cached scan(s).[/green]")


@cache_app.command("invalidate")
def cache_invalidate(
    path: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Forget cached scans for one project."""
    removed = _run_cache(_cache_for(path), lambda c: c.invalidate(path))
    console.print(f"[green]Invalidated {removed} cached scan(s) for {path.resolve()}.[/green]")


# ── smartctx config ─────────────────────────────────────────────


@config_app.command("show")
def config_show(
    path: Path = typer.Argument(Path("."), help="Project directory"),
) -> None:
    """Show the effective configuration for a project."""
    config = _load_config(path)
    settings = config.context
    config_file = path / CONFIG_FILE_NAME

    table = Table(title="Context Configuration", show_header=False, show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("Config File", str(config_file) if config_file.exists() else "(defaults)")
    table.add_row("Max Tokens", str(settings.max_tokens))
    table.add_row("Include", ", ".join(settings.include) or "(everything)")
    table.add_row("Exclude", ", ".join(settings.exclude) or "-")
    table.add_row("Priority Patterns", ", ".join(settings.priority_patterns) or "-")
    table.add_row("Include Tests", str(settings.include_tests))
    table.add_row("Cache Enabled", str(settings.enable_cache))
    table.add_row("Cache Path", settings.cache_path or DEFAULT_CACHE_PATH)
    table.add_row("Chunk Strategy", settings.chunk_strategy.value)
    table.add_row("Chunk Max Tokens", str(settings.chunk_max_tokens or settings.max_tokens))
    if config.project:
        table.add_row("Project Type", config.project.type or "(detected)")
        table.add_row("Extra Entry Points", ", ".join(config.project.entry_points) or "-")

    console.print(table)


@config_app.command("init")
def config_init(
    path: Path = typer.Argument(Path("."), help="Project directory"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a commented default configuration file."""
    if not path.is_dir():
        console.print(f"[red]Error:[/red] Project path is not a directory: {path}")
        raise typer.Exit(1) from None
    try:
        written = write_default_config(path / CONFIG_FILE_NAME, overwrite=force)
    except FileExistsError as e:
        console.print(f"[red]Error:[/red] {e} (use --force to overwrite)")
        raise typer.Exit(1) from None
    console.print(f"[green]Wrote {written}[/green]")
