"""Value types shared by the command catalog and the repository model."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import PurePosixPath
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from gitchain.core.version import Version


@dataclass(frozen=True, slots=True)
class ConfigRemote:
    """A configured remote: ``[remote "<name>"] url = <url>``."""

    name: str
    url: str = ""


@dataclass(frozen=True, slots=True)
class ConfigBranch:
    """A configured local branch, optionally tracking a remote."""

    name: str
    remote: ConfigRemote | None = None
    merge: str | None = None

    @property
    def is_tracking(self) -> bool:
        return self.remote is not None

    @property
    def upstream(self) -> str | None:
        if self.remote is None:
            return None
        target = (self.merge or self.name).removeprefix("refs/heads/")
        return f"{self.remote.name}/{target}"


class GitConfigSource(Enum):
    """Which configuration file a config read or write targets."""

    NON_SPECIFIED = ""
    LOCAL = "--local"
    USER = "--global"
    GLOBAL = "--system"


@dataclass(frozen=True, slots=True)
class GitStatusEntry:
    """A single changed path from ``git status``."""

    path: str
    index_status: str
    work_tree_status: str
    original_path: str | None = None

    @property
    def is_staged(self) -> bool:
        return self.index_status not in {".", "?", "!"}

    @property
    def is_unstaged(self) -> bool:
        return self.work_tree_status not in {".", "?", "!"}

    @property
    def is_untracked(self) -> bool:
        return self.index_status == "?"

    @property
    def is_conflicted(self) -> bool:
        return self.index_status == "U" or self.work_tree_status == "U"


@dataclass(frozen=True, slots=True)
class GitStatus:
    """Parsed working tree status.

    Attributes:
        branch: Local branch name, None when HEAD is detached
        upstream: Upstream branch (e.g. "origin/main"), None if not set
        ahead: Commits ahead of upstream
        behind: Commits behind upstream
        entries: Every staged, unstaged and untracked path
    """

    branch: str | None = None
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    head: str | None = None
    entries: tuple[GitStatusEntry, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return not self.entries

    @property
    def staged(self) -> list[GitStatusEntry]:
        return [e for e in self.entries if e.is_staged]

    @property
    def unstaged(self) -> list[GitStatusEntry]:
        return [e for e in self.entries if e.is_unstaged]

    @property
    def untracked(self) -> list[GitStatusEntry]:
        return [e for e in self.entries if e.is_untracked]


@dataclass(frozen=True, slots=True)
class GitLogEntry:
    commit_id: str
    author_name: str
    author_email: str
    timestamp: int
    summary: str
    body: str = ""

    @property
    def committed_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)


class GitLockOwner(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = ""


class GitLock(BaseModel):
    """An LFS file lock as reported by ``git lfs locks --json``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    path: str
    owner: GitLockOwner = Field(default_factory=GitLockOwner)
    locked_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class GitUser:
    name: str | None = None
    email: str | None = None

    def __str__(self) -> str:
        return f"Name: {self.name} Email: {self.email}"


@dataclass(frozen=True, slots=True)
class ValidateGitInstallResult:
    """Outcome of checking a git executable and its LFS extension.

    Both versions are reported even when the check fails so the caller can say
    which constraint was not met.
    """

    is_valid: bool
    git_version: Version | None = None
    git_lfs_version: Version | None = None


_SCP_LIKE_RE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?P<path>[^/].*)$")


@dataclass(frozen=True, slots=True)
class RepositoryUrl:
    """Clone URL split into host, owner and repository name.

    Accepts ``https://host/owner/name.git`` and scp-like
    ``git@host:owner/name.git`` forms.
    """

    raw: str
    host: str | None
    owner: str | None
    name: str | None

    @classmethod
    def parse(cls, url: str) -> RepositoryUrl:
        path: str
        host: str | None
        scp = _SCP_LIKE_RE.match(url) if "://" not in url else None
        if scp is not None:
            host, path = scp.group("host"), scp.group("path")
        else:
            parsed = urlparse(url)
            host, path = parsed.hostname, parsed.path

        segments = [segment for segment in PurePosixPath(path or "/").parts if segment != "/"]
        name = segments[-1].removesuffix(".git") if segments else None
        owner = segments[-2] if len(segments) >= 2 else None
        return cls(raw=url, host=host, owner=owner, name=name or None)

    @property
    def is_github(self) -> bool:
        return (self.host or "").lower() in {"github.com", "www.github.com"}

    def __str__(self) -> str:
        return self.raw


__all__ = [
    "ConfigBranch",
    "ConfigRemote",
    "GitConfigSource",
    "GitLock",
    "GitLockOwner",
    "GitLogEntry",
    "GitStatus",
    "GitStatusEntry",
    "GitUser",
    "RepositoryUrl",
    "ValidateGitInstallResult",
    "Version",
]
