"""CLI for workspace-sync."""

import contextlib
import logging
import queue
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .constants import WORKSPACE_SYNC_VERSION
from .errors import WorkspaceError
from .service import WorkspaceService
from .status_display import (
    display_hunks,
    display_search,
    display_status,
    display_summary,
    display_tree,
)

app = typer.Typer(help="""\
Serve a workspace directory to a browser editor: live file tree, file
contents, git status and staging, and full-text search.""")

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose)],
    )


def _virtual(path: str) -> str:
    """Accept workspace-relative paths on the command line as well as virtual ones."""
    path = path.replace("\\", "/")
    return path if path.startswith("/") else "/" + path


@contextlib.contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except WorkspaceError as e:
        err_console.print(f"[red]✗[/red] {e.kind}: {escape(str(e))}")
        raise typer.Exit(1)


def require_service(ctx: typer.Context) -> WorkspaceService:
    """Build the service for the selected workspace or exit with an error."""
    root = ctx.obj.get("root") if ctx.obj else None
    try:
        return WorkspaceService(root)
    except FileNotFoundError as e:
        err_console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"workspace-sync {WORKSPACE_SYNC_VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None, "--root", "-C", help="Workspace directory (default: $WORKSPACE_DIR or current directory)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    _configure_logging(verbose)
    ctx.obj = {"root": str(root) if root is not None else None, "verbose": verbose}


@app.command()
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, help="Bind address (default from config)"),
    port: Optional[int] = typer.Option(None, help="Port (default from config)"),
):
    """Run the HTTP/WebSocket server and watch the workspace for changes."""
    import uvicorn

    from .server import create_app

    service = require_service(ctx)
    config = service.ctx.config
    host = host or config.host
    port = port or config.port

    console.print(f"[bold]Workspace:[/bold] {service.ctx.root}")
    console.print(f"[bold]Listening:[/bold] http://{host}:{port}")
    with service:
        uvicorn.run(
            create_app(service),
            host=host,
            port=port,
            log_level="debug" if ctx.obj.get("verbose") else "info",
        )


@app.command()
def tree(
    ctx: typer.Context,
    path: str = typer.Argument("/", help="Directory to show"),
    json_output: bool = typer.Option(False, "--json", help="Print the tree as JSON"),
):
    """Show the filtered workspace tree."""
    service = require_service(ctx)
    with _handle_errors():
        node = service.tree(_virtual(path))
    if json_output:
        console.print_json(node.model_dump_json())
    else:
        display_tree(node, console)


@app.command()
def cat(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File to print"),
):
    """Print a workspace file."""
    service = require_service(ctx)
    with _handle_errors():
        content = service.read_file(_virtual(path))
    typer.echo(content, nl=False)


@app.command()
def status(ctx: typer.Context):
    """Show staged, unstaged and untracked changes.

    Examples:
        wsync status
        wsync -C ~/project status
    """
    service = require_service(ctx)
    with _handle_errors():
        display_status(service.status(), console)


@app.command()
def summary(ctx: typer.Context):
    """Show the branch and the latest commit."""
    service = require_service(ctx)
    with _handle_errors():
        display_summary(service.summary(), console)


@app.command()
def versions(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File to inspect"),
):
    """Print a file's content at HEAD, in the index and on disk as JSON."""
    service = require_service(ctx)
    with _handle_errors():
        result = service.versions(_virtual(path))
    console.print_json(result.model_dump_json())


@app.command()
def hunks(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="File to diff"),
    staged: bool = typer.Option(False, "--staged", help="Diff the index against HEAD"),
):
    """List the hunks of a file's diff with their indexes and digests."""
    service = require_service(ctx)
    vpath = _virtual(path)
    with _handle_errors():
        display_hunks(vpath, service.hunks(vpath, staged=staged), console, staged=staged)


@app.command()
def stage(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Path to stage"),
    all_paths: bool = typer.Option(False, "--all", "-A", help="Stage every change"),
    hunk: Optional[int] = typer.Option(None, "--hunk", help="Stage only this hunk index"),
    digest: Optional[str] = typer.Option(None, "--digest", help="Expected hunk digest"),
):
    """Stage a path, one of its hunks, or everything."""
    service = require_service(ctx)
    with _handle_errors():
        if all_paths:
            service.stage_all()
            console.print("[green]✓[/green] Staged all changes")
            return
        vpath = _require_path(path)
        if hunk is not None:
            service.stage_hunk(vpath, hunk, digest)
            console.print(f"[green]✓[/green] Staged hunk {hunk} of {escape(vpath)}")
        else:
            service.stage(vpath)
            console.print(f"[green]✓[/green] Staged {escape(vpath)}")


@app.command()
def unstage(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Path to unstage"),
    all_paths: bool = typer.Option(False, "--all", "-A", help="Unstage everything"),
    hunk: Optional[int] = typer.Option(None, "--hunk", help="Unstage only this staged hunk index"),
    digest: Optional[str] = typer.Option(None, "--digest", help="Expected hunk digest"),
):
    """Reset a path, one of its staged hunks, or the whole index to HEAD."""
    service = require_service(ctx)
    with _handle_errors():
        if all_paths:
            service.unstage_all()
            console.print("[green]✓[/green] Unstaged all changes")
            return
        vpath = _require_path(path)
        if hunk is not None:
            service.unstage_hunk(vpath, hunk, digest)
            console.print(f"[green]✓[/green] Unstaged hunk {hunk} of {escape(vpath)}")
        else:
            service.unstage(vpath)
            console.print(f"[green]✓[/green] Unstaged {escape(vpath)}")


@app.command()
def discard(
    ctx: typer.Context,
    path: Optional[str] = typer.Argument(None, help="Path whose working changes to discard"),
    all_paths: bool = typer.Option(False, "--all", "-A", help="Discard every change"),
    hunk: Optional[int] = typer.Option(None, "--hunk", help="Discard only this hunk index"),
    digest: Optional[str] = typer.Option(None, "--digest", help="Expected hunk digest"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Throw away working-tree changes. This cannot be undone."""
    service = require_service(ctx)
    with _handle_errors():
        if all_paths:
            if not yes and not typer.confirm(
                "Discard ALL uncommitted changes and delete untracked files?", default=False
            ):
                console.print("[yellow]Aborted[/yellow]")
                raise typer.Exit(1)
            result = service.discard_all()
            console.print(f"[green]✓[/green] Discarded changes to {len(result.paths)} path(s)")
            for p in result.paths:
                console.print(f"  [dim]{escape(p)}[/dim]")
            return
        vpath = _require_path(path)
        if hunk is not None:
            service.discard_hunk(vpath, hunk, digest)
            console.print(f"[green]✓[/green] Discarded hunk {hunk} of {escape(vpath)}")
        else:
            service.discard(vpath)
            console.print(f"[green]✓[/green] Discarded changes to {escape(vpath)}")


def _require_path(path: Optional[str]) -> str:
    if not path:
        err_console.print("[red]✗[/red] A path is required (or pass --all)")
        raise typer.Exit(2)
    return _virtual(path)


@app.command()
def commit(
    ctx: typer.Context,
    message: str = typer.Option(..., "--message", "-m", help="Commit message"),
):
    """Commit the staged changes."""
    service = require_service(ctx)
    with _handle_errors():
        result = service.commit(message)
    console.print(f"[green]✓[/green] Committed {result.commit[:12]}")


@app.command()
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Text to look for (case-insensitive)"),
    globs: Optional[str] = typer.Option(None, "--glob", "-g", help="Comma-separated file globs"),
    max_results: Optional[int] = typer.Option(None, "--max", "-n", help="Maximum matches"),
    engine: str = typer.Option("auto", "--engine", help="auto, ripgrep or fallback"),
):
    """Search file contents."""
    service = require_service(ctx)
    with _handle_errors():
        result = service.search(query, globs=globs, max_results=max_results, engine=engine)
    display_search(result, console)


@app.command()
def watch(
    ctx: typer.Context,
    count: Optional[int] = typer.Option(None, "--count", help="Exit after this many events"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Exit after this many idle seconds"),
):
    """Print change events as they happen (Ctrl-C to stop)."""
    service = require_service(ctx)
    seen = 0
    with service, service.bus.subscribe() as subscription:
        console.print(f"[dim]Watching {service.ctx.root}[/dim]")
        try:
            while count is None or seen < count:
                try:
                    event = subscription.get(timeout=timeout)
                except queue.Empty:
                    break
                typer.echo(event.model_dump_json())
                seen += 1
        except KeyboardInterrupt:
            pass


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
