"""Git command catalog.

GitClient exposes one method per git command. Every method returns an
unstarted TaskChain rooted at one or more ProcessTasks; nothing runs until the
caller awaits ``chain.run()``. The client keeps no mutable state beyond its
process backend, settings and cancellation source, so concurrent callers can
build independent chains freely.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from pathlib import Path
from typing import Any, TypeVar

from gitchain.core.cancellation import CancellationSource, CancellationToken
from gitchain.core.config import GitSettings
from gitchain.core.console import get_logger
from gitchain.tasks.chain import TaskChain, batched, fuse
from gitchain.tasks.process import ProcessDescriptor, ProcessRunner, ProcessTask
from gitchain.tasks.processors import (
    FirstLineProcessor,
    LinesOutputProcessor,
    OutputProcessor,
    PathOutputProcessor,
    StringOutputProcessor,
)

from . import install
from .models import (
    GitConfigSource,
    GitLock,
    GitLogEntry,
    GitStatus,
    ValidateGitInstallResult,
    Version,
)
from .processors import (
    LOG_FORMAT,
    GitLfsVersionProcessor,
    GitLocksProcessor,
    GitLogProcessor,
    GitStatusProcessor,
    GitVersionProcessor,
)

logger = get_logger(__name__)

T = TypeVar("T")

# git config --get exits 1 when the key is not set
_CONFIG_KEY_MISSING = 1


class GitClient:
    """Builds task chains for git commands.

    Args:
        runner: Process backend (defaults to ProcessRunner)
        settings: Executable path, minimum versions, batch size
        working_dir: Repository working directory commands run in
        cancellation: Session-wide cancellation source
        platform: Override of ``sys.platform`` for install discovery
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        *,
        settings: GitSettings | None = None,
        working_dir: Path | None = None,
        cancellation: CancellationSource | None = None,
        platform: str | None = None,
    ) -> None:
        self._runner = runner or ProcessRunner()
        self._settings = settings or GitSettings()
        self._working_dir = working_dir
        self._cancellation = cancellation or CancellationSource()
        self._platform = platform

    @property
    def token(self) -> CancellationToken:
        return self._cancellation.token

    @property
    def settings(self) -> GitSettings:
        return self._settings

    @property
    def working_dir(self) -> Path | None:
        return self._working_dir

    @property
    def git_executable(self) -> str:
        configured = self._settings.executable_path
        return str(configured) if configured else install.executable_name("git", self._platform)

    def cancel(self) -> None:
        """Cancel every chain built by this client that has not finished."""
        self._cancellation.cancel()

    def _task(
        self,
        args: Sequence[str],
        processor: OutputProcessor[T],
        *,
        name: str,
        executable: str | Path | None = None,
        absent_exit_codes: Collection[int] = (),
    ) -> ProcessTask[T]:
        descriptor = ProcessDescriptor(
            executable=str(executable) if executable else self.git_executable,
            args=tuple(args),
            working_dir=self._working_dir,
        )
        return ProcessTask(
            descriptor,
            processor,
            self._runner,
            self.token,
            name=name,
            absent_exit_codes=absent_exit_codes,
        )

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def find_git_installation(self) -> TaskChain[Path | None]:
        """Locate a git executable.

        A configured path wins; otherwise the platform candidates are probed
        and only when they come up empty is ``which``/``where`` run. Absence
        resolves to ``None``; this chain only ends unsuccessfully when it is
        cancelled.
        """
        configured = self._settings.executable_path
        if configured:
            return TaskChain.completed(Path(configured), token=self.token, name="configured-git")

        cache_path = self._settings.user_cache_path

        def probe() -> Path | None:
            return install.probe_git_candidates(cache_path, self._platform)

        def fallback(found: Path | None) -> TaskChain[Path | None] | Path:
            if found is not None:
                logger.debug("Git installation discovered: %s", found)
                return found
            return self._find_exec("git")

        return TaskChain.defer(probe, token=self.token, name="probe-git").and_then(
            fallback, name="find-git"
        )

    def _find_exec(self, name: str) -> TaskChain[Path | None]:
        search = self._task(
            [name],
            PathOutputProcessor(),
            name=f"find-exec:{name}",
            executable=install.exec_search_command(self._platform),
        )

        def settle(success: bool, path: Path | None) -> Path | None:
            if not success:
                logger.debug("%s not found on PATH", name)
            return path if success else None

        return search.then(settle, always=True, name=f"find-exec:{name}:settle")

    def validate_git_install(self, path: Path) -> TaskChain[ValidateGitInstallResult]:
        """Check that ``path`` is a git executable new enough, with git-lfs.

        The path is checked when the chain runs, not when it is built. Both
        version queries run concurrently. The versions are reported even
        when validation fails so callers can say which constraint failed.
        """
        path = Path(path)
        minimum_git = self._settings.minimum_git
        minimum_lfs = self._settings.minimum_git_lfs

        def combine(
            success: bool, git_version: Version | None, lfs_version: Version | None
        ) -> ValidateGitInstallResult:
            valid = (
                success
                and git_version is not None
                and lfs_version is not None
                and git_version >= minimum_git
                and lfs_version >= minimum_lfs
            )
            logger.debug("Validated %s: git=%s lfs=%s valid=%s", path, git_version, lfs_version, valid)
            return ValidateGitInstallResult(valid, git_version, lfs_version)

        def query(exists: bool) -> TaskChain[ValidateGitInstallResult] | ValidateGitInstallResult:
            if not exists:
                logger.debug("No git executable at %s", path)
                return ValidateGitInstallResult(False, None, None)
            return fuse(
                self.version(executable=path),
                self.lfs_version(executable=path),
                combine,
                always=True,
                name="validate-versions",
            )

        return TaskChain.defer(path.is_file, token=self.token, name="validate-exists").and_then(
            query, name="validate-git-install"
        )

    # ------------------------------------------------------------------
    # Repository setup and inspection
    # ------------------------------------------------------------------

    def init(self, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["init"], processor or StringOutputProcessor(), name="init")

    def lfs_install(self, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["lfs", "install"], processor or StringOutputProcessor(), name="lfs-install")

    def status(self, processor: OutputProcessor[GitStatus] | None = None) -> TaskChain[GitStatus]:
        return self._task(
            [
                "-c",
                "core.quotepath=false",
                "status",
                "--porcelain=v2",
                "--branch",
                "-z",
                "--untracked-files=all",
            ],
            processor or GitStatusProcessor(),
            name="status",
        )

    def log(
        self,
        processor: OutputProcessor[list[GitLogEntry]] | None = None,
        *,
        max_count: int | None = None,
    ) -> TaskChain[list[GitLogEntry]]:
        args = ["-c", "i18n.logoutputencoding=utf8", "log", f"--format={LOG_FORMAT}"]
        if max_count is not None:
            args.append(f"--max-count={max_count}")
        return self._task(args, processor or GitLogProcessor(), name="log")

    def version(
        self,
        processor: OutputProcessor[Version] | None = None,
        *,
        executable: str | Path | None = None,
    ) -> TaskChain[Version]:
        return self._task(
            ["--version"], processor or GitVersionProcessor(), name="version", executable=executable
        )

    def lfs_version(
        self,
        processor: OutputProcessor[Version] | None = None,
        *,
        executable: str | Path | None = None,
    ) -> TaskChain[Version]:
        return self._task(
            ["lfs", "version"],
            processor or GitLfsVersionProcessor(),
            name="lfs-version",
            executable=executable,
        )

    def list_branches(
        self, *, remote: bool = False, processor: OutputProcessor[list[str]] | None = None
    ) -> TaskChain[list[str]]:
        """Short names of local (``main``) or remote (``origin/main``) branches."""
        namespace = "refs/remotes" if remote else "refs/heads"
        return self._task(
            ["for-each-ref", "--format=%(refname:short)", namespace],
            processor or LinesOutputProcessor(),
            name="list-remote-branches" if remote else "list-local-branches",
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(
        self,
        key: str,
        config_source: GitConfigSource,
        processor: OutputProcessor[str | None] | None = None,
    ) -> TaskChain[str | None]:
        """Read one config value; an unset key resolves to ``None``."""
        logger.debug("GetConfig: %s", key)
        args = ["config"]
        if config_source.value:
            args.append(config_source.value)
        args.extend(["--get", key])
        return self._task(
            args,
            processor or FirstLineProcessor(),
            name=f"config-get:{key}",
            absent_exit_codes=(_CONFIG_KEY_MISSING,),
        )

    def set_config(
        self,
        key: str,
        value: str,
        config_source: GitConfigSource,
        processor: OutputProcessor[str] | None = None,
    ) -> TaskChain[str]:
        args = ["config"]
        if config_source.value:
            args.append(config_source.value)
        args.extend([key, value])
        return self._task(args, processor or StringOutputProcessor(), name=f"config-set:{key}")

    def get_config_user_and_email(self) -> TaskChain[tuple[str | None, str | None]]:
        """Read user.name then user.email; a failed or missing read leaves a None hole."""

        def hole(success: bool, value: str | None) -> str | None:
            return value if success else None

        username = self.get_config("user.name", GitConfigSource.USER).then(
            hole, always=True, name="user.name"
        )
        email = self.get_config("user.email", GitConfigSource.USER).then(
            hole, always=True, name="user.email"
        )

        def pair(name: str | None, mail: str | None) -> tuple[str | None, str | None]:
            logger.debug("user.name:%s user.email:%s", name, mail)
            return (name, mail)

        return fuse(username, email, pair, sequential=True, name="user-and-email")

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    def list_locks(
        self, local: bool, processor: OutputProcessor[list[GitLock]] | None = None
    ) -> TaskChain[list[GitLock]]:
        args = ["lfs", "locks", "--json"]
        if local:
            args.append("--local")
        return self._task(args, processor or GitLocksProcessor(), name="list-locks")

    def lock(self, file: str, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["lfs", "lock", file], processor or StringOutputProcessor(), name="lock")

    def unlock(
        self, file: str, force: bool, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        args = ["lfs", "unlock", file]
        if force:
            args.append("--force")
        return self._task(args, processor or StringOutputProcessor(), name="unlock")

    # ------------------------------------------------------------------
    # Remotes and synchronisation
    # ------------------------------------------------------------------

    def pull(
        self, remote: str, branch: str | None, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        args = ["pull", remote]
        if branch:
            args.append(branch)
        return self._task(args, processor or StringOutputProcessor(), name="pull")

    def push(
        self, remote: str, branch: str | None, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        args = ["push", "--set-upstream", remote]
        if branch:
            args.append(branch)
        return self._task(args, processor or StringOutputProcessor(), name="push")

    def fetch(self, remote: str, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["fetch", remote], processor or StringOutputProcessor(), name="fetch")

    def revert(self, changeset: str, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(
            ["revert", "--no-edit", changeset], processor or StringOutputProcessor(), name="revert"
        )

    def remote_add(
        self, remote: str, url: str, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        return self._task(
            ["remote", "add", remote, url], processor or StringOutputProcessor(), name="remote-add"
        )

    def remote_remove(self, remote: str, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(
            ["remote", "remove", remote], processor or StringOutputProcessor(), name="remote-remove"
        )

    def remote_change(
        self, remote: str, url: str, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        return self._task(
            ["remote", "set-url", remote, url],
            processor or StringOutputProcessor(),
            name="remote-change",
        )

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def switch_branch(self, branch: str, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["checkout", branch], processor or StringOutputProcessor(), name="switch-branch")

    def delete_branch(
        self,
        branch: str,
        delete_unmerged: bool = False,
        processor: OutputProcessor[str] | None = None,
    ) -> TaskChain[str]:
        flag = "-D" if delete_unmerged else "-d"
        return self._task(
            ["branch", flag, branch], processor or StringOutputProcessor(), name="delete-branch"
        )

    def create_branch(
        self, branch: str, base_branch: str, processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        return self._task(
            ["branch", branch, base_branch],
            processor or StringOutputProcessor(),
            name="create-branch",
        )

    # ------------------------------------------------------------------
    # Index and commits
    # ------------------------------------------------------------------

    def commit(
        self, message: str, body: str = "", processor: OutputProcessor[str] | None = None
    ) -> TaskChain[str]:
        args = ["commit", "-m", message]
        if body:
            args.extend(["-m", body])
        return self._task(args, processor or StringOutputProcessor(), name="commit")

    def add_all(self, processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        return self._task(["add", "--all"], processor or StringOutputProcessor(), name="add-all")

    def add(self, files: Sequence[str], processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        """Stage ``files`` in batches; a failing batch stops the rest."""
        logger.debug("Add %d files", len(files))
        return self._batched(["add", "--"], files, processor, name="add")

    def remove(self, files: Sequence[str], processor: OutputProcessor[str] | None = None) -> TaskChain[str]:
        """Remove ``files`` from the index, keeping them in the working tree."""
        return self._batched(["rm", "--cached", "--quiet", "--"], files, processor, name="remove")

    def add_and_commit(
        self,
        files: Sequence[str],
        message: str,
        body: str = "",
        processor: OutputProcessor[str] | None = None,
    ) -> TaskChain[str]:
        """Stage ``files`` then commit; the commit never runs if staging failed."""
        return self.add(files).then_run(self.commit(message, body, processor), name="add-and-commit")

    def _batched(
        self,
        prefix: list[str],
        files: Sequence[str],
        processor: OutputProcessor[str] | None,
        *,
        name: str,
    ) -> TaskChain[str]:
        size = self._settings.add_batch_size
        counter = iter(range(1, len(files) // size + 2))

        def factory(batch: list[str]) -> TaskChain[Any]:
            return self._task(
                [*prefix, *batch],
                processor or StringOutputProcessor(),
                name=f"{name}[{next(counter)}]",
            )

        return batched(files, size, factory, empty="", token=self.token)


__all__ = ["GitClient"]
