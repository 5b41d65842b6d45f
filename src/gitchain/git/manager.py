"""Repository managers publish raw repository notifications.

RepositoryManager is the contract the Repository aggregator consumes: a set
of signals plus a configuration reader and the mutating operations, each
returning a TaskChain. GitRepositoryManager implements it on top of GitClient
and the repository's ``.git/config``.
"""

from __future__ import annotations

import asyncio
import configparser
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

from gitchain.core.console import get_logger
from gitchain.core.signals import Signal
from gitchain.tasks.chain import TaskChain

from .client import GitClient
from .models import ConfigBranch, ConfigRemote, GitLock, GitLogEntry, GitStatus, GitUser

logger = get_logger(__name__)

LocalBranchIndex = dict[str, ConfigBranch]
RemoteBranchIndex = dict[str, dict[str, ConfigBranch]]


class RepositoryConfig(Protocol):
    def get_branch(self, name: str) -> ConfigBranch | None: ...

    def get_remote(self, name: str) -> ConfigRemote | None: ...

    def get_remotes(self) -> Sequence[ConfigRemote]: ...


def resolve_git_dir(path: Path) -> Path:
    """Return the git directory of a work tree, following ``gitdir:`` files."""
    git_dir = path / ".git"
    if git_dir.is_file():
        try:
            content = git_dir.read_text(encoding="utf-8").strip()
            if content.startswith("gitdir:"):
                target = content.partition(":")[2].strip()
                if target:
                    return (path / target).resolve()
        except OSError:
            return git_dir
    return git_dir


def _section_name(section: str, kind: str) -> str | None:
    """``remote "origin"`` -> ``origin`` for ``kind="remote"``."""
    head, _, rest = section.partition(" ")
    if head.lower() != kind or not rest:
        return None
    return rest.strip().strip('"')


def _new_parser() -> configparser.ConfigParser:
    # git allows repeated keys (e.g. several fetch refspecs) and valueless booleans
    return configparser.ConfigParser(strict=False, interpolation=None, allow_no_value=True)


class GitConfigFile:
    """Reads remotes and branches from a repository's ``config`` file.

    The file is parsed once and cached; call ``reload()`` after it changes.
    An unreadable file reads as empty.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._parser: configparser.ConfigParser | None = None

    @classmethod
    def for_repository(cls, repository_path: Path) -> GitConfigFile:
        return cls(resolve_git_dir(repository_path) / "config")

    def reload(self) -> None:
        self._parser = None

    def _sections(self) -> configparser.ConfigParser:
        if self._parser is None:
            parser = _new_parser()
            try:
                parser.read_string(self.path.read_text(encoding="utf-8"), source=str(self.path))
            except FileNotFoundError:
                logger.debug("No git config at %s", self.path)
            except (OSError, configparser.Error) as exc:
                logger.warning("Cannot read git config %s: %s", self.path, exc)
                parser = _new_parser()
            self._parser = parser
        return self._parser

    def _named(self, kind: str) -> Iterable[tuple[str, configparser.SectionProxy]]:
        parser = self._sections()
        for section in parser.sections():
            name = _section_name(section, kind)
            if name:
                yield name, parser[section]

    def get_remotes(self) -> list[ConfigRemote]:
        return [
            ConfigRemote(name=name, url=section.get("url", "").strip('"'))
            for name, section in self._named("remote")
        ]

    def get_remote(self, name: str) -> ConfigRemote | None:
        return next((remote for remote in self.get_remotes() if remote.name == name), None)

    def get_branches(self) -> list[ConfigBranch]:
        return [self._branch(name, section) for name, section in self._named("branch")]

    def get_branch(self, name: str) -> ConfigBranch | None:
        for branch_name, section in self._named("branch"):
            if branch_name == name:
                return self._branch(branch_name, section)
        return None

    def _branch(self, name: str, section: configparser.SectionProxy) -> ConfigBranch:
        remote_name = section.get("remote")
        remote: ConfigRemote | None = None
        if remote_name and remote_name != ".":
            remote = self.get_remote(remote_name) or ConfigRemote(name=remote_name)
        return ConfigBranch(name=name, remote=remote, merge=section.get("merge"))


class RepositoryManager(ABC):
    """Source of raw repository notifications.

    Signals:
        head_updated(head): contents of HEAD changed
        status_updated(status): fresh working tree status
        locks_updated(locks): fresh LFS lock list
        local_branch_list_updated(index): full local branch index
        remote_branch_list_updated(index): full remote branch index
        local_branch_added(name) / local_branch_removed(name)
        local_branch_commit_changed(name): the tip of a local branch moved
        remote_branch_added(remote, name) / remote_branch_removed(remote, name)
        user_loaded(user): configured user name and email

    Notifications are delivered one at a time from the event loop thread.
    """

    def __init__(self) -> None:
        self.head_updated: Signal[[str]] = Signal("head_updated")
        self.status_updated: Signal[[GitStatus]] = Signal("status_updated")
        self.locks_updated: Signal[[list[GitLock]]] = Signal("locks_updated")
        self.local_branch_list_updated: Signal[[LocalBranchIndex]] = Signal(
            "local_branch_list_updated"
        )
        self.remote_branch_list_updated: Signal[[RemoteBranchIndex]] = Signal(
            "remote_branch_list_updated"
        )
        self.local_branch_added: Signal[[str]] = Signal("local_branch_added")
        self.local_branch_removed: Signal[[str]] = Signal("local_branch_removed")
        self.local_branch_commit_changed: Signal[[str]] = Signal("local_branch_commit_changed")
        self.remote_branch_added: Signal[[str, str]] = Signal("remote_branch_added")
        self.remote_branch_removed: Signal[[str, str]] = Signal("remote_branch_removed")
        self.user_loaded: Signal[[GitUser]] = Signal("user_loaded")

    @property
    @abstractmethod
    def config(self) -> RepositoryConfig: ...

    @abstractmethod
    def refresh(self) -> TaskChain[Any]:
        """Schedule a status and head refresh; the returned chain is already started."""

    @abstractmethod
    def remote_add(self, remote: str, url: str) -> TaskChain[Any]: ...

    @abstractmethod
    def remote_change(self, remote: str, url: str) -> TaskChain[Any]: ...

    @abstractmethod
    def push(self, remote: str, branch: str | None) -> TaskChain[Any]: ...

    @abstractmethod
    def pull(self, remote: str, branch: str | None) -> TaskChain[Any]: ...

    @abstractmethod
    def fetch(self, remote: str) -> TaskChain[Any]: ...

    @abstractmethod
    def revert(self, changeset: str) -> TaskChain[Any]: ...

    @abstractmethod
    def list_locks(self, local: bool) -> TaskChain[list[GitLock]]: ...

    @abstractmethod
    def lock_file(self, file: str) -> TaskChain[Any]: ...

    @abstractmethod
    def unlock_file(self, file: str, force: bool) -> TaskChain[Any]: ...

    @abstractmethod
    def commit_all_files(self, message: str, body: str) -> TaskChain[Any]: ...

    @abstractmethod
    def commit_files(self, files: Sequence[str], message: str, body: str) -> TaskChain[Any]: ...

    @abstractmethod
    def log(self) -> TaskChain[list[GitLogEntry]]: ...


def split_remote_ref(short_name: str) -> tuple[str, str] | None:
    """``origin/feature/x`` -> ``("origin", "feature/x")``; symbolic HEAD refs are skipped."""
    remote, sep, branch = short_name.partition("/")
    if not sep or not branch or branch == "HEAD":
        return None
    return remote, branch


class GitRepositoryManager(RepositoryManager):
    """RepositoryManager backed by git commands and the repository config file.

    Chains that publish notifications are scheduled on the running event loop
    and tracked until they finish; ``wait_idle()`` awaits all of them.
    """

    def __init__(
        self,
        client: GitClient,
        repository_path: Path,
        *,
        config: GitConfigFile | None = None,
    ) -> None:
        super().__init__()
        self._client = client
        self.repository_path = repository_path
        self.git_dir = resolve_git_dir(repository_path)
        self._config = config or GitConfigFile(self.git_dir / "config")
        self._local_branches: set[str] = set()
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> GitConfigFile:
        return self._config

    @property
    def client(self) -> GitClient:
        return self._client

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(self, chain: TaskChain[Any]) -> TaskChain[Any]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; %s left unstarted", chain.name)
            return chain
        task = loop.create_task(chain.run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return chain

    async def wait_idle(self) -> None:
        """Wait until every scheduled chain, including ones they schedule, finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        self._client.cancel()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)

    def _refresh_after(self, value: Any) -> Any:
        self.refresh()
        return value

    def _list_locks_after(self, value: Any) -> Any:
        self._schedule(self.list_locks(False))
        return value

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def read_head(self) -> str | None:
        try:
            return (self.git_dir / "HEAD").read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.debug("Cannot read HEAD in %s: %s", self.git_dir, exc)
            return None

    def publish_head(self) -> None:
        head = self.read_head()
        if head is not None:
            self.head_updated.emit(head)

    def _publish_status(self, status: GitStatus) -> GitStatus:
        self.status_updated.emit(status)
        return status

    def _publish_locks(self, locks: list[GitLock]) -> list[GitLock]:
        self.locks_updated.emit(locks)
        return locks

    def _publish_user(self, pair: tuple[str | None, str | None]) -> GitUser:
        user = GitUser(name=pair[0], email=pair[1])
        self.user_loaded.emit(user)
        return user

    def _publish_branches(self, local: list[str], remote: list[str]) -> None:
        local_index: LocalBranchIndex = {
            name: self._config.get_branch(name) or ConfigBranch(name=name) for name in local
        }
        remote_index: RemoteBranchIndex = {}
        for short_name in remote:
            parts = split_remote_ref(short_name)
            if parts is None:
                continue
            remote_name, branch = parts
            config_remote = self._config.get_remote(remote_name) or ConfigRemote(name=remote_name)
            remote_index.setdefault(remote_name, {})[branch] = ConfigBranch(
                name=branch, remote=config_remote
            )
        self._local_branches = set(local_index)
        self.local_branch_list_updated.emit(local_index)
        self.remote_branch_list_updated.emit(remote_index)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def branches(self) -> TaskChain[None]:
        """List local and remote branches and publish both indices."""
        return self._client.list_branches().fuse(
            self._client.list_branches(remote=True), self._publish_branches, name="branches"
        )

    def load(self) -> TaskChain[GitStatus]:
        """Initial load: branches, user, HEAD, then status.

        Each step runs even if the previous one failed; the result is the
        status step's.
        """

        def head(success: bool, _: Any) -> None:
            self.publish_head()

        return (
            self.branches()
            .then_run(self._client.get_config_user_and_email().then(self._publish_user), always=True)
            .then(head, always=True, name="publish-head")
            .then_run(self._client.status().then(self._publish_status), always=True, name="load")
        )

    def refresh(self) -> TaskChain[GitStatus]:
        self.publish_head()
        return self._schedule(self._client.status().then(self._publish_status, name="refresh"))

    # ------------------------------------------------------------------
    # Watcher entry points
    # ------------------------------------------------------------------

    def on_head_changed(self) -> None:
        self.publish_head()

    def on_index_changed(self) -> None:
        self._schedule(self._client.status().then(self._publish_status, name="index-status"))

    def on_config_changed(self) -> None:
        self._config.reload()
        self._schedule(self.branches())

    def on_local_ref_changed(self, name: str, exists: bool) -> None:
        if not exists:
            if name in self._local_branches:
                self._local_branches.discard(name)
                self.local_branch_removed.emit(name)
            return
        if name not in self._local_branches:
            self._local_branches.add(name)
            self.local_branch_added.emit(name)
        else:
            self.local_branch_commit_changed.emit(name)

    def on_remote_ref_changed(self, remote: str, name: str, exists: bool) -> None:
        if exists:
            self.remote_branch_added.emit(remote, name)
        else:
            self.remote_branch_removed.emit(remote, name)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def remote_add(self, remote: str, url: str) -> TaskChain[str]:
        return self._client.remote_add(remote, url).then(self._config_changed_after)

    def remote_change(self, remote: str, url: str) -> TaskChain[str]:
        return self._client.remote_change(remote, url).then(self._config_changed_after)

    def _config_changed_after(self, value: Any) -> Any:
        self.on_config_changed()
        return value

    def push(self, remote: str, branch: str | None) -> TaskChain[str]:
        return self._client.push(remote, branch).then(self._refresh_after)

    def pull(self, remote: str, branch: str | None) -> TaskChain[str]:
        return self._client.pull(remote, branch).then(self._refresh_after)

    def fetch(self, remote: str) -> TaskChain[str]:
        return self._client.fetch(remote).then(self._refresh_after)

    def revert(self, changeset: str) -> TaskChain[str]:
        return self._client.revert(changeset).then(self._refresh_after)

    def list_locks(self, local: bool) -> TaskChain[list[GitLock]]:
        return self._client.list_locks(local).then(self._publish_locks, name="list-locks")

    def lock_file(self, file: str) -> TaskChain[str]:
        return self._client.lock(file).then(self._list_locks_after)

    def unlock_file(self, file: str, force: bool) -> TaskChain[str]:
        return self._client.unlock(file, force).then(self._list_locks_after)

    def commit_all_files(self, message: str, body: str) -> TaskChain[str]:
        return (
            self._client.add_all()
            .then_run(self._client.commit(message, body))
            .then(self._refresh_after, name="commit-all")
        )

    def commit_files(self, files: Sequence[str], message: str, body: str) -> TaskChain[str]:
        return self._client.add_and_commit(files, message, body).then(
            self._refresh_after, name="commit-files"
        )

    def log(self) -> TaskChain[list[GitLogEntry]]:
        return self._client.log()


__all__ = [
    "GitConfigFile",
    "GitRepositoryManager",
    "LocalBranchIndex",
    "RemoteBranchIndex",
    "RepositoryConfig",
    "RepositoryManager",
    "resolve_git_dir",
    "split_remote_ref",
]
