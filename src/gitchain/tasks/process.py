"""Process execution for task chains.

Provides:
- ProcessDescriptor: what to run and where
- ProcessOutput: captured exit code and streams
- ProcessRunner: asyncio subprocess backend honouring a CancellationToken
- ProcessTask: chain node wrapping exactly one process invocation
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

import psutil

from gitchain.core.cancellation import CancellationToken
from gitchain.core.console import get_logger
from gitchain.core.result import (
    ChainCancelledError,
    CommandFailedError,
    Err,
    GitChainError,
    Ok,
    ProcessSpawnError,
    Result,
)
from gitchain.tasks.chain import TaskChain
from gitchain.tasks.processors import OutputProcessor

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ProcessDescriptor:
    """Executable, arguments and working directory for one invocation."""

    executable: str
    args: tuple[str, ...] = ()
    working_dir: Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def display(self) -> str:
        name = Path(self.executable).name
        return " ".join([name, *self.args])


@dataclass(frozen=True, slots=True)
class ProcessOutput:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


class ProcessRunner:
    """Async subprocess backend.

    Spawns the process off the caller's task, captures both streams and
    resolves to ``Ok(ProcessOutput)`` whatever the exit code. Spawn failures
    become ``Err(ProcessSpawnError)``; cancellation terminates the process tree
    and becomes ``Err(ChainCancelledError)``.
    """

    async def run(
        self, descriptor: ProcessDescriptor, token: CancellationToken
    ) -> Result[ProcessOutput, GitChainError]:
        if token.is_cancelled:
            return Err(ChainCancelledError(f"{descriptor.display} was cancelled before start"))

        env = {**os.environ, **descriptor.env} if descriptor.env else None
        cwd = descriptor.working_dir
        if cwd is not None and not cwd.is_dir():
            return Err(
                ProcessSpawnError("Working directory does not exist", context={"cwd": str(cwd)})
            )

        try:
            process = await asyncio.create_subprocess_exec(
                descriptor.executable,
                *descriptor.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                stdin=asyncio.subprocess.DEVNULL,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            return Err(
                ProcessSpawnError(
                    f"{descriptor.executable} not found",
                    context={"command": descriptor.display},
                )
            )
        except OSError as exc:
            return Err(
                ProcessSpawnError(
                    f"Failed to start {descriptor.executable}",
                    context={"command": descriptor.display, "error": str(exc)},
                )
            )

        loop = asyncio.get_running_loop()
        cancel_requested = asyncio.Event()
        unregister = token.register(lambda: loop.call_soon_threadsafe(cancel_requested.set))
        communicate = asyncio.ensure_future(process.communicate())
        cancel_wait = asyncio.ensure_future(cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            communicate.cancel()
            await self._terminate(process)
            raise
        finally:
            unregister()
            cancel_wait.cancel()

        if communicate not in done:
            communicate.cancel()
            await self._terminate(process)
            logger.debug("Terminated %s after cancellation", descriptor.display)
            return Err(ChainCancelledError(f"{descriptor.display} was cancelled"))

        stdout, stderr = communicate.result()
        return Ok(
            ProcessOutput(
                returncode=process.returncode if process.returncode is not None else -1,
                stdout=_decode(stdout),
                stderr=_decode(stderr),
            )
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Kill the process and any children it spawned (e.g. git-remote-https)."""
        if process.returncode is not None:
            return

        def _kill_tree() -> None:
            try:
                parent = psutil.Process(process.pid)
                children = parent.children(recursive=True)
            except psutil.NoSuchProcess:
                return
            for proc in [*children, parent]:
                try:
                    proc.kill()
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue

        await asyncio.to_thread(_kill_tree)
        await process.wait()


class ProcessTask(TaskChain[T]):
    """Chain node that runs one process and interprets its output.

    A non-zero exit code becomes ``CommandFailedError`` with the captured
    output attached. Exit codes listed in ``absent_exit_codes`` with an empty
    stderr mean "nothing there" and resolve to ``Ok(None)``.
    """

    def __init__(
        self,
        descriptor: ProcessDescriptor,
        processor: OutputProcessor[T],
        runner: ProcessRunner,
        token: CancellationToken | None = None,
        *,
        name: str | None = None,
        absent_exit_codes: Collection[int] = (),
    ) -> None:
        super().__init__(token, name=name or descriptor.display)
        self.descriptor = descriptor
        self._processor = processor
        self._runner = runner
        self._absent_exit_codes = frozenset(absent_exit_codes)

    async def _resolve(self) -> Result[T, GitChainError]:
        if not self._start_work():
            return self._cancelled()

        logger.debug("Running %s", self.descriptor.display)
        match await self._runner.run(self.descriptor, self.token):
            case Err(err):
                return Err(err)
            case Ok(output):
                pass

        if output.returncode in self._absent_exit_codes and not output.stderr.strip():
            return Ok(None)  # type: ignore[arg-type]

        if not output.succeeded:
            message = (
                output.stderr.strip()
                or output.stdout.strip()
                or f"{self.descriptor.display} exited with {output.returncode}"
            )
            return Err(
                CommandFailedError(
                    message,
                    returncode=output.returncode,
                    stdout=output.stdout,
                    stderr=output.stderr,
                    context={"command": self.descriptor.display},
                )
            )

        return self._processor.process(output.stdout)


__all__ = [
    "ProcessDescriptor",
    "ProcessOutput",
    "ProcessRunner",
    "ProcessTask",
]
