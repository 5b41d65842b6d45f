"""Watch a repository's git directory and forward changes to its manager.

watchdog delivers events on its observer thread; each relevant change is
classified there and handed to the event loop with ``call_soon_threadsafe``
so the manager only ever runs on the loop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

from gitchain.core.console import get_logger

from .manager import GitRepositoryManager

logger = get_logger(__name__)


class ChangeKind(Enum):
    HEAD = "head"
    INDEX = "index"
    CONFIG = "config"
    LOCAL_REF = "local_ref"
    REMOTE_REF = "remote_ref"


@dataclass(frozen=True, slots=True)
class GitDirChange:
    kind: ChangeKind
    path: Path
    name: str | None = None
    remote: str | None = None


def classify_change(git_dir: Path, path: Path) -> GitDirChange | None:
    """Map a path inside ``git_dir`` to the repository change it signals."""
    try:
        relative = PurePosixPath(path.relative_to(git_dir).as_posix())
    except ValueError:
        return None
    if relative.suffix == ".lock":
        return None

    parts = relative.parts
    if parts == ("HEAD",):
        return GitDirChange(ChangeKind.HEAD, path)
    if parts == ("index",):
        return GitDirChange(ChangeKind.INDEX, path)
    if parts == ("config",):
        return GitDirChange(ChangeKind.CONFIG, path)
    if len(parts) >= 3 and parts[:2] == ("refs", "heads"):
        return GitDirChange(ChangeKind.LOCAL_REF, path, name="/".join(parts[2:]))
    if len(parts) >= 4 and parts[:2] == ("refs", "remotes") and parts[-1] != "HEAD":
        return GitDirChange(
            ChangeKind.REMOTE_REF, path, name="/".join(parts[3:]), remote=parts[2]
        )
    return None


class _GitDirEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: RepositoryWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [event.src_path]
        if isinstance(event, FileSystemMovedEvent):
            # git writes <file>.lock and renames it over <file>
            paths.append(event.dest_path)
        for raw in paths:
            change = classify_change(self._watcher.git_dir, Path(str(raw)))
            if change is not None:
                self._watcher.submit(change)


class RepositoryWatcher:
    """Observes ``.git`` and calls the manager's watcher entry points.

    Usage:
        with RepositoryWatcher(manager, asyncio.get_running_loop()):
            ...
    """

    def __init__(
        self, manager: GitRepositoryManager, loop: asyncio.AbstractEventLoop
    ) -> None:
        self._manager = manager
        self._loop = loop
        self.git_dir = manager.git_dir.resolve()
        self._observer: Observer | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(_GitDirEventHandler(self), str(self.git_dir), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.debug("Watching %s", self.git_dir)

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=2)
        self._observer = None

    def __enter__(self) -> RepositoryWatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def submit(self, change: GitDirChange) -> None:
        """Hand ``change`` to the event loop; safe to call from any thread."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.dispatch, change)

    def dispatch(self, change: GitDirChange) -> None:
        logger.debug("Repository change: %s %s", change.kind.value, change.name or "")
        manager = self._manager
        match change.kind:
            case ChangeKind.HEAD:
                manager.on_head_changed()
            case ChangeKind.INDEX:
                manager.on_index_changed()
            case ChangeKind.CONFIG:
                manager.on_config_changed()
            case ChangeKind.LOCAL_REF:
                manager.on_local_ref_changed(change.name or "", change.path.exists())
            case ChangeKind.REMOTE_REF:
                manager.on_remote_ref_changed(
                    change.remote or "", change.name or "", change.path.exists()
                )


__all__ = ["ChangeKind", "GitDirChange", "RepositoryWatcher", "classify_change"]
