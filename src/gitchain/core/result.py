"""
Unified Result types and error hierarchy for gitchain.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy for chains and git commands
3. Helper functions for Result operations

Usage:
    from gitchain.core.result import Ok, Err, Result, GitError

    def parse_head(raw: str) -> Result[str, GitError]:
        if not raw:
            return Err(GitError("HEAD is empty"))
        return Ok(raw.strip())

    result = parse_head(text)
    if result.is_ok():
        print(result.value)
    else:
        print(result.error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class GitChainError(Exception):
    """Base exception for all gitchain errors.

    Carries a human readable message plus a context mapping that is rendered
    after the message, e.g. ``git exited with 128 [returncode=128]``.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class GitError(GitChainError):
    """Raised or returned when a git operation cannot produce its result."""


class ProcessSpawnError(GitError):
    """The executable could not be launched.

    Examples:
    - Executable not found
    - Permission denied
    - OS-level I/O error while starting the process
    """


class CommandFailedError(GitError):
    """The process ran but reported failure through its exit code.

    The captured output is preserved so callers can report diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        context: dict | None = None,
    ) -> None:
        super().__init__(message, context={"returncode": returncode, **(context or {})})
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class OutputParseError(GitError):
    """An output processor could not interpret the process output."""


class ContinuationError(GitChainError):
    """A continuation or combine function raised while producing its value."""


class ChainCancelledError(GitChainError):
    """The chain observed cancellation before or while doing its work."""


class ChainStateError(GitChainError):
    """Raised for illegal chain usage.

    Examples:
    - Running a chain that was already started
    - Attaching a second consumer to a chain's result
    - Waiting on a chain that was never started
    """


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "GitChainError",
    "GitError",
    "ProcessSpawnError",
    "CommandFailedError",
    "OutputParseError",
    "ContinuationError",
    "ChainCancelledError",
    "ChainStateError",
]
