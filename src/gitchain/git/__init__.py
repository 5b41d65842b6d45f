"""Git command catalog and repository state.

This package provides:
    - GitClient: one TaskChain-returning method per git command
    - Repository: state aggregated from repository manager notifications
    - GitRepositoryManager / GitConfigFile: notifications from git and .git/config
    - RepositoryWatcher: watchdog observer of the git directory
"""

from __future__ import annotations

from .client import GitClient
from .manager import GitConfigFile, GitRepositoryManager, RepositoryConfig, RepositoryManager
from .models import (
    ConfigBranch,
    ConfigRemote,
    GitConfigSource,
    GitLock,
    GitLogEntry,
    GitStatus,
    GitStatusEntry,
    GitUser,
    RepositoryUrl,
    ValidateGitInstallResult,
    Version,
)
from .repository import Repository
from .watcher import RepositoryWatcher

__all__ = [
    "ConfigBranch",
    "ConfigRemote",
    "GitClient",
    "GitConfigFile",
    "GitConfigSource",
    "GitLock",
    "GitLogEntry",
    "GitRepositoryManager",
    "GitStatus",
    "GitStatusEntry",
    "GitUser",
    "Repository",
    "RepositoryConfig",
    "RepositoryManager",
    "RepositoryUrl",
    "RepositoryWatcher",
    "ValidateGitInstallResult",
    "Version",
]
