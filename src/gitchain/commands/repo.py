from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gitchain.core.console import console
from gitchain.core.decorators import handle_exceptions
from gitchain.core.result import Err, GitError, Ok, Result
from gitchain.git.client import GitClient
from gitchain.git.manager import GitRepositoryManager, resolve_git_dir
from gitchain.git.models import GitStatus, ValidateGitInstallResult
from gitchain.git.repository import Repository
from gitchain.git.watcher import RepositoryWatcher
from gitchain.tasks.chain import TaskChain

if TYPE_CHECKING:
    from gitchain.main import AppState

T = TypeVar("T")

REPO_OPTION_HELP = "Path to a git repository (defaults to current directory)."


def _client(state: AppState, repo_path: Path | None = None) -> GitClient:
    return GitClient(settings=state.config.git, working_dir=repo_path)


def _unwrap(result: Result[T, Exception]) -> T:
    match result:
        case Ok(value):
            return value
        case Err(err):
            raise err


def _run(chain: TaskChain[T]) -> T:
    return _unwrap(asyncio.run(chain.run()))


def _ensure_repo(path: Path) -> Path:
    path = path.expanduser().resolve()
    if not resolve_git_dir(path).exists():
        raise GitError("Not a git repository", context={"path": str(path)})
    return path


async def _open_repository(
    state: AppState, repo_path: Path
) -> tuple[Repository, GitRepositoryManager]:
    manager = GitRepositoryManager(_client(state, repo_path), repo_path)
    repository = Repository(
        repo_path.name, repo_path, default_remote=state.config.git.default_remote
    )
    repository.initialize(manager)
    _unwrap(await manager.load().run())
    await manager.wait_idle()
    return repository, manager


def _format_version(version: object | None) -> str:
    return str(version) if version is not None else "[red]missing[/]"


@handle_exceptions
def find(ctx: typer.Context) -> None:
    """Locate the git executable."""
    state: AppState = ctx.obj
    path = _run(_client(state).find_git_installation())
    if path is None:
        console.print("[yellow]No git installation found.[/yellow]")
        raise typer.Exit(code=1)
    console.print(str(path))


@handle_exceptions
def validate(
    ctx: typer.Context,
    path: Path | None = typer.Option(
        None, "--path", "-p", help="Git executable to validate (defaults to the discovered one)."
    ),
) -> None:
    """Check the git and git-lfs versions of an installation."""
    state: AppState = ctx.obj
    client = _client(state)
    candidate = path or _run(client.find_git_installation())
    if candidate is None:
        console.print("[yellow]No git installation found.[/yellow]")
        raise typer.Exit(code=1)

    result: ValidateGitInstallResult = _run(client.validate_git_install(candidate))
    settings = state.config.git

    table = Table(title=f"Git installation {candidate}", box=box.SIMPLE)
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Found", style="white")
    table.add_column("Minimum", style="white")
    table.add_row("git", _format_version(result.git_version), settings.minimum_git_version)
    table.add_row(
        "git-lfs", _format_version(result.git_lfs_version), settings.minimum_git_lfs_version
    )
    console.print(table)

    if not result.is_valid:
        console.print("[red]Installation does not meet the minimum requirements.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Installation is valid.[/green]")


@handle_exceptions
def whoami(
    ctx: typer.Context,
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
) -> None:
    """Show the configured git user name and email."""
    state: AppState = ctx.obj
    name, email = _run(_client(state, repo_path.expanduser()).get_config_user_and_email())
    console.print(f"Name:  {escape(name) if name else '[yellow](not set)[/]'}")
    console.print(f"Email: {escape(email) if email else '[yellow](not set)[/]'}")


def _render_status(repository: Repository, status: GitStatus | None) -> Table:
    summary = Table(title=f"Repository {repository.name}", box=box.SIMPLE_HEAVY, expand=True)
    summary.add_column("Field", style="cyan", no_wrap=True)
    summary.add_column("Value", style="white")
    summary.add_row("Path", repository.local_path.as_posix())
    summary.add_row("Branch", repository.current_branch_name or "(detached)")
    summary.add_row("Remote", repository.current_remote_name or "none")
    summary.add_row("Clone URL", repository.clone_url or "none")
    summary.add_row("Head", escape(repository.head or ""))
    if status is not None:
        summary.add_row("Upstream", status.upstream or "none")
        summary.add_row("Ahead/Behind", f"{status.ahead}/{status.behind}")
        summary.add_row(
            "Changes",
            f"{len(status.staged)} staged, {len(status.unstaged)} unstaged, "
            f"{len(status.untracked)} untracked",
        )
    summary.add_row("Local branches", ", ".join(sorted(repository.local_branches)) or "none")
    return summary


@handle_exceptions
def status(
    ctx: typer.Context,
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
) -> None:
    """Summarize branch, remote and working tree state."""
    state: AppState = ctx.obj
    path = _ensure_repo(repo_path)

    async def _collect() -> Repository:
        repository, manager = await _open_repository(state, path)
        await manager.close()
        return repository

    repository = asyncio.run(_collect())
    current = repository.current_status
    console.print(_render_status(repository, current))

    if current is not None and current.entries:
        changes = Table(box=box.SIMPLE)
        changes.add_column("Index", no_wrap=True)
        changes.add_column("Tree", no_wrap=True)
        changes.add_column("Path", style="white")
        for entry in current.entries:
            target = entry.path
            if entry.original_path:
                target = f"{entry.original_path} -> {entry.path}"
            changes.add_row(entry.index_status, entry.work_tree_status, escape(target))
        console.print(changes)


@handle_exceptions
def log(
    ctx: typer.Context,
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
    max_count: int = typer.Option(20, "--max-count", "-n", help="Maximum number of commits."),
) -> None:
    """Show recent commits."""
    state: AppState = ctx.obj
    path = _ensure_repo(repo_path)
    entries = _run(_client(state, path).log(max_count=max_count))

    table = Table(title="Commits", box=box.SIMPLE)
    table.add_column("Commit", style="yellow", no_wrap=True)
    table.add_column("Date", style="white", no_wrap=True)
    table.add_column("Author", style="cyan")
    table.add_column("Summary", style="white")
    for entry in entries:
        date = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M")
        table.add_row(entry.commit_id[:8], date, escape(entry.author_name), escape(entry.summary))
    console.print(table)


@handle_exceptions
def locks(
    ctx: typer.Context,
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
    local: bool = typer.Option(False, "--local", help="Only show locks cached locally."),
) -> None:
    """List git-lfs file locks."""
    state: AppState = ctx.obj
    path = _ensure_repo(repo_path)
    lock_list = _run(_client(state, path).list_locks(local))
    if not lock_list:
        console.print("[green]No locks.[/green]")
        return

    table = Table(title="Locks", box=box.SIMPLE)
    table.add_column("ID", style="yellow", no_wrap=True)
    table.add_column("Path", style="white")
    table.add_column("Owner", style="cyan")
    table.add_column("Locked at", style="white")
    for lock in lock_list:
        locked_at = lock.locked_at.isoformat() if lock.locked_at else ""
        table.add_row(lock.id, escape(lock.path), escape(lock.owner.name), locked_at)
    console.print(table)


@handle_exceptions
def commit(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Commit summary."),
    files: list[str] | None = typer.Argument(None, help="Files to stage before committing."),
    body: str = typer.Option("", "--body", "-b", help="Commit message body."),
    all_files: bool = typer.Option(False, "--all", "-a", help="Stage every change."),
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
) -> None:
    """Stage files and commit them."""
    state: AppState = ctx.obj
    path = _ensure_repo(repo_path)
    if not files and not all_files:
        console.print("[red]Pass files to commit or --all.[/red]")
        raise typer.Exit(code=1)

    async def _commit() -> str:
        repository, manager = await _open_repository(state, path)
        chain = (
            repository.commit_all_files(message, body)
            if all_files
            else repository.commit_files(files or [], message, body)
        )
        try:
            return _unwrap(await chain.run())
        finally:
            await manager.wait_idle()
            await manager.close()

    output = asyncio.run(_commit())
    console.print(Panel(escape(output) or "committed", title="git commit", box=box.SIMPLE))


@handle_exceptions
def watch(
    ctx: typer.Context,
    repo_path: Path = typer.Option(Path("."), "--repo", "-r", help=REPO_OPTION_HELP),
) -> None:
    """Print repository changes as they happen."""
    state: AppState = ctx.obj
    path = _ensure_repo(repo_path)

    async def _watch() -> None:
        repository, manager = await _open_repository(state, path)
        console.print(_render_status(repository, repository.current_status))

        repository.current_branch_changed.connect(
            lambda name: console.print(f"branch: [cyan]{name or '(detached)'}[/]")
        )
        repository.current_remote_changed.connect(
            lambda name: console.print(f"remote: [cyan]{name or 'none'}[/]")
        )
        repository.head_changed.connect(lambda: console.print("head moved"))
        repository.local_branch_list_changed.connect(
            lambda: console.print("branches: " + ", ".join(sorted(repository.local_branches)))
        )
        repository.status_updated.connect(
            lambda status: console.print(
                f"status: {len(status.entries)} changed path(s)"
                if status.entries
                else "status: clean"
            )
        )

        with RepositoryWatcher(manager, asyncio.get_running_loop()):
            try:
                await asyncio.Event().wait()
            finally:
                await manager.close()

    console.print("[dim]Watching repository, press Ctrl-C to stop.[/dim]")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("[yellow]Stopping watcher...[/yellow]")


__all__ = ["commit", "find", "locks", "log", "status", "validate", "watch", "whoami"]
