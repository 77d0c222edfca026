"""Display logic for the CLI: tree, status, hunks and search tables."""

from typing import List, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from .core import DirNode, FileLeaf, FileStatus, Hunk, RepoStatus, RepoSummary, SearchResult

_STATUS_STYLE = {
    FileStatus.MODIFIED: "[yellow]modified[/yellow]",
    FileStatus.ADDED: "[green]added[/green]",
    FileStatus.DELETED: "[red]deleted[/red]",
    FileStatus.RENAMED: "[blue]renamed[/blue]",
    FileStatus.UNTRACKED: "[dim]untracked[/dim]",
    FileStatus.UNMODIFIED: "",
}


def _add_children(branch: Tree, node: DirNode) -> None:
    for child in node.children:
        if isinstance(child, DirNode):
            _add_children(branch.add(f"[bold blue]{escape(child.name)}/[/bold blue]"), child)
        else:
            branch.add(escape(child.name))


def display_tree(node: Union[DirNode, FileLeaf], console: Console) -> None:
    """Render a snapshot as a rich tree."""
    if isinstance(node, FileLeaf):
        console.print(escape(node.path))
        return
    root = Tree(f"[bold]{escape(node.path)}[/bold]")
    _add_children(root, node)
    console.print(root)


def display_summary(summary: RepoSummary, console: Console) -> None:
    branch = summary.branch or "(detached)"
    line = f"[bold]Branch:[/bold] {escape(branch)}"
    if summary.ahead or summary.behind:
        line += f"  [dim]ahead {summary.ahead}, behind {summary.behind}[/dim]"
    console.print(line)
    if summary.last is None:
        console.print("[dim]No commits yet[/dim]")
        return
    subject = summary.last.message.splitlines()[0] if summary.last.message else ""
    console.print(
        f"[bold]Last commit:[/bold] {summary.last.hash[:12]} {escape(subject)} "
        f"[dim]({escape(summary.last.author_name)}, {summary.last.date})[/dim]"
    )


def display_status(status: RepoStatus, console: Console) -> None:
    """Display working tree and index status, grouped like ``git status``."""
    branch = status.branch or "(detached)"
    console.print(f"\n[bold]On branch[/bold] {escape(branch)}")
    if status.ahead or status.behind:
        console.print(f"[dim]ahead {status.ahead}, behind {status.behind}[/dim]")

    if not status.changes:
        console.print("[green]✓ Working tree clean[/green]")
        return

    staged = status.staged
    if staged:
        table = Table(title=f"\nStaged ({len(staged)})", title_justify="left")
        table.add_column("Status")
        table.add_column("Path", style="cyan")
        for record in staged:
            path = record.path
            if record.original_path:
                path = f"{record.original_path} -> {record.path}"
            table.add_row(_STATUS_STYLE[record.index_status], escape(path))
        console.print(table)

    unstaged = status.unstaged
    if unstaged:
        table = Table(title=f"\nNot staged ({len(unstaged)})", title_justify="left")
        table.add_column("Status")
        table.add_column("Path", style="cyan")
        for record in unstaged:
            table.add_row(_STATUS_STYLE[record.working_status], escape(record.path))
        console.print(table)

    untracked = status.untracked
    if untracked:
        console.print(f"\n[bold]Untracked ({len(untracked)}):[/bold]")
        for record in untracked:
            console.print(f"  [dim]{escape(record.path)}[/dim]")


def display_hunks(path: str, hunks: List[Hunk], console: Console, staged: bool = False) -> None:
    label = "staged" if staged else "unstaged"
    if not hunks:
        console.print(f"[dim]No {label} changes in {escape(path)}[/dim]")
        return
    for hunk in hunks:
        console.print(
            f"\n[bold]#{hunk.index}[/bold] [cyan]{escape(hunk.header)}[/cyan] "
            f"[green]+{hunk.added}[/green] [red]-{hunk.removed}[/red] [dim]{hunk.digest[:19]}[/dim]"
        )
        for line in hunk.lines:
            if line.startswith("+"):
                console.print(f"[green]{escape(line)}[/green]")
            elif line.startswith("-"):
                console.print(f"[red]{escape(line)}[/red]")
            else:
                console.print(escape(line))


def display_search(result: SearchResult, console: Console) -> None:
    table = Table(title=f"Matches ({len(result.matches)}) via {result.engine.value}")
    table.add_column("Path", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Text")
    for match in result.matches:
        table.add_row(escape(match.path), str(match.line), escape(match.text))
    console.print(table)
    if result.truncated:
        console.print("[yellow]Result limit reached; refine the query to see more[/yellow]")
