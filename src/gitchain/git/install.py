"""Git installation discovery probes.

The probes only look at the filesystem; the executable-search fallback is a
process task built by GitClient.find_git_installation.
"""

from __future__ import annotations

import sys
from pathlib import Path

from gitchain.core.console import get_logger

logger = get_logger(__name__)

SYSTEM_GIT_CANDIDATE = Path("/usr/local/bin/git")
PORTABLE_GIT_PREFIX = "portablegit_"


def is_windows(platform: str | None = None) -> bool:
    return (platform or sys.platform).startswith("win")


def executable_name(name: str, platform: str | None = None) -> str:
    return f"{name}.exe" if is_windows(platform) else name


def find_portable_git(user_cache_path: Path, platform: str | None = None) -> Path | None:
    """Return ``<cache>/PortableGit_*/cmd/git[.exe]`` for the first matching directory."""
    if not user_cache_path.is_dir():
        return None
    try:
        candidates = sorted(
            entry
            for entry in user_cache_path.iterdir()
            if entry.is_dir() and entry.name.lower().startswith(PORTABLE_GIT_PREFIX)
        )
    except OSError as exc:
        logger.debug("Cannot scan %s for portable git: %s", user_cache_path, exc)
        return None
    if not candidates:
        return None
    return candidates[0] / "cmd" / executable_name("git", platform)


def find_system_git(platform: str | None = None) -> Path | None:
    """Return the conventional system install location when it exists (POSIX only)."""
    if is_windows(platform):
        return None
    return SYSTEM_GIT_CANDIDATE if SYSTEM_GIT_CANDIDATE.is_file() else None


def probe_git_candidates(user_cache_path: Path, platform: str | None = None) -> Path | None:
    """Platform-specific candidates, in preference order."""
    found: Path | None = None
    if is_windows(platform):
        found = find_portable_git(user_cache_path, platform)
    if found is None:
        found = find_system_git(platform)
    return found


def exec_search_command(platform: str | None = None) -> str:
    """Executable-search tool for the platform: ``where`` on Windows, ``which`` elsewhere."""
    return "where" if is_windows(platform) else "which"


__all__ = [
    "SYSTEM_GIT_CANDIDATE",
    "exec_search_command",
    "executable_name",
    "find_portable_git",
    "find_system_git",
    "is_windows",
    "probe_git_candidates",
]
