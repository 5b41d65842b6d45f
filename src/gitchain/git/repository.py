"""In-memory repository state derived from manager notifications.

Repository subscribes to a RepositoryManager and keeps the current branch,
current remote, head, status, locks, user and branch indices. It re-emits its
own signals only when a derived value actually changes; status and lock
updates are always republished.

Usage:
    repository = Repository("project", Path("~/src/project").expanduser())
    repository.current_branch_changed.connect(on_branch)
    repository.initialize(manager)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from types import MappingProxyType
from typing import Any

from gitchain.core.console import get_logger
from gitchain.core.result import GitError
from gitchain.core.signals import Signal, Subscription
from gitchain.tasks.chain import TaskChain

from .manager import LocalBranchIndex, RemoteBranchIndex, RepositoryManager
from .models import ConfigBranch, ConfigRemote, GitLock, GitLogEntry, GitStatus, GitUser, RepositoryUrl

logger = get_logger(__name__)

HEAD_REF_PREFIX = "ref:"
LOCAL_BRANCH_PREFIX = "refs/heads/"
DEFAULT_REMOTE = "origin"


class Repository:
    """Aggregated state of one local repository.

    Identity is the local path: two instances with the same path are equal and
    hash alike whatever their clone URLs.
    """

    def __init__(self, name: str, local_path: Path, *, default_remote: str = DEFAULT_REMOTE) -> None:
        if not name or not name.strip():
            raise ValueError("Repository name must not be empty")
        self._name = name
        self._local_path = Path(local_path)
        self._default_remote = default_remote

        self._manager: RepositoryManager | None = None
        self._subscriptions: list[Subscription] = []

        self._clone_url: RepositoryUrl | None = None
        self._current_branch: ConfigBranch | None = None
        self._current_remote: ConfigRemote | None = None
        self._head: str | None = None
        self._status: GitStatus | None = None
        self._locks: list[GitLock] = []
        self._user = GitUser()
        self._local_branches: LocalBranchIndex = {}
        self._remote_branches: RemoteBranchIndex = {}

        self.status_updated: Signal[[GitStatus]] = Signal("status_updated")
        self.current_branch_changed: Signal[[str | None]] = Signal("current_branch_changed")
        self.current_remote_changed: Signal[[str | None]] = Signal("current_remote_changed")
        self.local_branch_list_changed: Signal[[]] = Signal("local_branch_list_changed")
        self.remote_branch_list_changed: Signal[[]] = Signal("remote_branch_list_changed")
        self.head_changed: Signal[[]] = Signal("head_changed")
        self.locks_updated: Signal[[list[GitLock]]] = Signal("locks_updated")
        self.repository_info_changed: Signal[[]] = Signal("repository_info_changed")

    def __repr__(self) -> str:
        return (
            f"Repository(name={self._name!r}, local_path={str(self._local_path)!r}, "
            f"clone_url={self.clone_url!r}, branch={self.current_branch_name!r}, "
            f"remote={self.current_remote_name!r})"
        )

    # Clone URL is left out of identity because it changes with the current remote.
    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, Repository):
            return NotImplemented
        return self._local_path == other._local_path

    def __hash__(self) -> int:
        return hash(self._local_path)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def local_path(self) -> Path:
        return self._local_path

    @property
    def manager(self) -> RepositoryManager | None:
        return self._manager

    @property
    def clone_url(self) -> str | None:
        return self._clone_url.raw if self._clone_url else None

    @property
    def owner(self) -> str | None:
        return self._clone_url.owner if self._clone_url else None

    @property
    def is_github(self) -> bool:
        return self._clone_url is not None and self._clone_url.is_github

    @property
    def head(self) -> str | None:
        return self._head

    @property
    def current_branch_name(self) -> str | None:
        return self._current_branch.name if self._current_branch else None

    @property
    def current_remote_name(self) -> str | None:
        return self._current_remote.name if self._current_remote else None

    @property
    def current_locks(self) -> list[GitLock]:
        return list(self._locks)

    @property
    def user(self) -> GitUser:
        return self._user

    @property
    def local_branches(self) -> Mapping[str, ConfigBranch]:
        return MappingProxyType(self._local_branches)

    @property
    def remote_branches(self) -> Mapping[str, Mapping[str, ConfigBranch]]:
        return MappingProxyType(
            {remote: MappingProxyType(branches) for remote, branches in self._remote_branches.items()}
        )

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    @property
    def current_branch(self) -> ConfigBranch | None:
        return self._current_branch

    @current_branch.setter
    def current_branch(self, value: ConfigBranch | None) -> None:
        if value == self._current_branch:
            return
        self._current_branch = value
        logger.debug("Current branch changed: %s", value)
        self.current_branch_changed.emit(self.current_branch_name)

    @property
    def current_remote(self) -> ConfigRemote | None:
        return self._current_remote

    @current_remote.setter
    def current_remote(self, value: ConfigRemote | None) -> None:
        if value == self._current_remote:
            return
        self._current_remote = value
        self._update_clone_url()
        logger.debug("Current remote changed: %s", value)
        self.current_remote_changed.emit(self.current_remote_name)

    @property
    def current_status(self) -> GitStatus | None:
        return self._status

    @current_status.setter
    def current_status(self, value: GitStatus) -> None:
        self._status = value
        self.status_updated.emit(value)

    @user.setter
    def user(self, value: GitUser) -> None:
        self._user = value

    def _update_clone_url(self) -> None:
        remote = self._current_remote
        self._clone_url = RepositoryUrl.parse(remote.url) if remote and remote.url else None
        parsed_name = self._clone_url.name if self._clone_url else None
        self._name = parsed_name or self._local_path.name
        self.repository_info_changed.emit()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def initialize(self, manager: RepositoryManager) -> None:
        """Subscribe to ``manager``; any previous manager is detached first."""
        if manager is None:
            raise ValueError("manager is required")
        self.detach()
        self._manager = manager
        self._subscriptions = [
            manager.head_updated.connect(self._on_head_updated),
            manager.status_updated.connect(self._on_status_updated),
            manager.locks_updated.connect(self._on_locks_updated),
            manager.local_branch_list_updated.connect(self._on_local_branch_list_updated),
            manager.remote_branch_list_updated.connect(self._on_remote_branch_list_updated),
            manager.local_branch_added.connect(self._on_local_branch_added),
            manager.local_branch_removed.connect(self._on_local_branch_removed),
            manager.local_branch_commit_changed.connect(self._on_local_branch_commit_changed),
            manager.remote_branch_added.connect(self._on_remote_branch_added),
            manager.remote_branch_removed.connect(self._on_remote_branch_removed),
            manager.user_loaded.connect(self._on_user_loaded),
        ]

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []
        self._manager = None

    # ------------------------------------------------------------------
    # Notification handlers
    # ------------------------------------------------------------------

    def _on_head_updated(self, head: str) -> None:
        head = head.strip()
        if head == self._head:
            return
        self._head = head
        self._derive_current()

    def _derive_current(self) -> None:
        branch = self._branch_from_head()
        self.current_branch = branch
        self.current_remote = self._remote_for(branch)

    def _branch_from_head(self) -> ConfigBranch | None:
        head = self._head or ""
        if not head.startswith(HEAD_REF_PREFIX):
            return None
        ref = head[len(HEAD_REF_PREFIX) :].strip()
        if not ref.startswith(LOCAL_BRANCH_PREFIX):
            return None
        return self._local_branches.get(ref[len(LOCAL_BRANCH_PREFIX) :])

    def _remote_for(self, branch: ConfigBranch | None) -> ConfigRemote | None:
        if branch is not None and branch.is_tracking:
            return branch.remote
        if self._manager is None:
            return None
        config = self._manager.config
        remote = config.get_remote(self._default_remote)
        if remote is not None:
            return remote
        return next(iter(config.get_remotes()), None)

    def _on_status_updated(self, status: GitStatus) -> None:
        self.current_status = status

    def _on_locks_updated(self, locks: list[GitLock]) -> None:
        self._locks = list(locks)
        self.locks_updated.emit(self.current_locks)

    def _on_local_branch_list_updated(self, branches: LocalBranchIndex) -> None:
        if branches != self._local_branches:
            self._local_branches = dict(branches)
            self.local_branch_list_changed.emit()
        # Remote URLs can change without touching the index.
        if self._head is not None:
            self._derive_current()

    def _on_remote_branch_list_updated(self, branches: RemoteBranchIndex) -> None:
        self._remote_branches = {remote: dict(names) for remote, names in branches.items()}
        self.remote_branch_list_changed.emit()

    def _on_local_branch_added(self, name: str) -> None:
        if name in self._local_branches:
            return
        branch = self._manager.config.get_branch(name) if self._manager else None
        self._local_branches[name] = branch or ConfigBranch(name=name)
        self.local_branch_list_changed.emit()
        if self._head is not None:
            self._derive_current()

    def _on_local_branch_removed(self, name: str) -> None:
        if name not in self._local_branches:
            return
        del self._local_branches[name]
        self.local_branch_list_changed.emit()
        if self._head is not None:
            self._derive_current()

    def _on_local_branch_commit_changed(self, name: str) -> None:
        if name != self.current_branch_name:
            return
        self.head_changed.emit()
        if self._manager is not None:
            self._manager.refresh()

    def _on_remote_branch_added(self, remote: str, name: str) -> None:
        branches = self._remote_branches.get(remote)
        if branches is None or name in branches:
            return
        config_remote = self._manager.config.get_remote(remote) if self._manager else None
        branches[name] = ConfigBranch(name=name, remote=config_remote or ConfigRemote(name=remote))
        self.remote_branch_list_changed.emit()

    def _on_remote_branch_removed(self, remote: str, name: str) -> None:
        branches = self._remote_branches.get(remote)
        if branches is None or name not in branches:
            return
        del branches[name]
        self.remote_branch_list_changed.emit()

    def _on_user_loaded(self, user: GitUser) -> None:
        self.user = user

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _not_initialized(self, operation: str) -> TaskChain[Any]:
        return TaskChain.failed(
            GitError(
                f"Cannot {operation}: repository is not initialized",
                context={"path": str(self._local_path)},
            ),
            name=operation,
        )

    def _no_remote(self, operation: str) -> TaskChain[Any]:
        return TaskChain.failed(
            GitError(f"Cannot {operation}: no current remote", context={"path": str(self._local_path)}),
            name=operation,
        )

    def refresh(self) -> TaskChain[Any] | None:
        return self._manager.refresh() if self._manager else None

    def setup_remote(self, remote: str, remote_url: str) -> TaskChain[Any]:
        """Add ``remote`` when there is no current remote, otherwise point it at ``remote_url``."""
        if not remote or not remote.strip():
            raise ValueError("remote must not be empty")
        if not remote_url or not remote_url.strip():
            raise ValueError("remote_url must not be empty")
        if self._manager is None:
            return self._not_initialized("setup remote")
        if self._current_remote is None or not self._current_remote.name:
            return self._manager.remote_add(remote, remote_url)
        return self._manager.remote_change(remote, remote_url)

    def log(self) -> TaskChain[list[GitLogEntry]]:
        if self._manager is None:
            return TaskChain.completed([], name="log")
        return self._manager.log()

    def commit_all_files(self, message: str, body: str = "") -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("commit")
        return self._manager.commit_all_files(message, body)

    def commit_files(self, files: Sequence[str], message: str, body: str = "") -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("commit")
        return self._manager.commit_files(files, message, body)

    def pull(self) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("pull")
        if self._current_remote is None:
            return self._no_remote("pull")
        return self._manager.pull(self._current_remote.name, self.current_branch_name)

    def push(self) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("push")
        if self._current_remote is None:
            return self._no_remote("push")
        return self._manager.push(self._current_remote.name, self.current_branch_name)

    def fetch(self) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("fetch")
        if self._current_remote is None:
            return self._no_remote("fetch")
        return self._manager.fetch(self._current_remote.name)

    def revert(self, changeset: str) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("revert")
        return self._manager.revert(changeset)

    def list_locks(self) -> TaskChain[Any]:
        if self._manager is None:
            return TaskChain.completed(None, name="list-locks")
        return self._manager.list_locks(False)

    def request_lock(self, file: str) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("lock")
        return self._manager.lock_file(file)

    def release_lock(self, file: str, force: bool = False) -> TaskChain[Any]:
        if self._manager is None:
            return self._not_initialized("unlock")
        return self._manager.unlock_file(file, force)


__all__ = ["DEFAULT_REMOTE", "Repository"]
