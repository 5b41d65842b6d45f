"""In-memory repository manager for driving Repository notifications."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from gitchain.git.manager import RepositoryManager
from gitchain.git.models import ConfigBranch, ConfigRemote, GitLock, GitLogEntry
from gitchain.tasks.chain import TaskChain


@dataclass
class MemoryConfig:
    branches: dict[str, ConfigBranch] = field(default_factory=dict)
    remotes: list[ConfigRemote] = field(default_factory=list)

    def get_branch(self, name: str) -> ConfigBranch | None:
        return self.branches.get(name)

    def get_remote(self, name: str) -> ConfigRemote | None:
        return next((remote for remote in self.remotes if remote.name == name), None)

    def get_remotes(self) -> Sequence[ConfigRemote]:
        return list(self.remotes)


class FakeRepositoryManager(RepositoryManager):
    """Records operation calls; every operation returns a completed chain."""

    def __init__(self, config: MemoryConfig | None = None) -> None:
        super().__init__()
        self.memory_config = config or MemoryConfig()
        self.calls: list[tuple[Any, ...]] = []

    @property
    def config(self) -> MemoryConfig:
        return self.memory_config

    def _record(self, *call: Any) -> TaskChain[Any]:
        self.calls.append(call)
        return TaskChain.completed(call[0], name=str(call[0]))

    def refresh(self) -> TaskChain[Any]:
        return self._record("refresh")

    def remote_add(self, remote: str, url: str) -> TaskChain[Any]:
        return self._record("remote_add", remote, url)

    def remote_change(self, remote: str, url: str) -> TaskChain[Any]:
        return self._record("remote_change", remote, url)

    def push(self, remote: str, branch: str | None) -> TaskChain[Any]:
        return self._record("push", remote, branch)

    def pull(self, remote: str, branch: str | None) -> TaskChain[Any]:
        return self._record("pull", remote, branch)

    def fetch(self, remote: str) -> TaskChain[Any]:
        return self._record("fetch", remote)

    def revert(self, changeset: str) -> TaskChain[Any]:
        return self._record("revert", changeset)

    def list_locks(self, local: bool) -> TaskChain[list[GitLock]]:
        return self._record("list_locks", local)

    def lock_file(self, file: str) -> TaskChain[Any]:
        return self._record("lock_file", file)

    def unlock_file(self, file: str, force: bool) -> TaskChain[Any]:
        return self._record("unlock_file", file, force)

    def commit_all_files(self, message: str, body: str) -> TaskChain[Any]:
        return self._record("commit_all_files", message, body)

    def commit_files(self, files: Sequence[str], message: str, body: str) -> TaskChain[Any]:
        return self._record("commit_files", list(files), message, body)

    def log(self) -> TaskChain[list[GitLogEntry]]:
        return self._record("log")
