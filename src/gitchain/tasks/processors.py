"""Output processors turn captured stdout into typed values.

Every processor implements ``process(output) -> Result[T, GitChainError]``.
The generic processors live here; git-specific ones (status, log, locks,
versions) are in ``gitchain.git.processors``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, TypeVar

from gitchain.core.result import Err, GitChainError, Ok, OutputParseError, Result

T_co = TypeVar("T_co", covariant=True)


class OutputProcessor(Protocol[T_co]):
    """Interprets the stdout of a successful process."""

    def process(self, output: str) -> Result[T_co, GitChainError]: ...


class StringOutputProcessor:
    """Whole output with surrounding whitespace removed."""

    def process(self, output: str) -> Result[str, GitChainError]:
        return Ok(output.strip())


class LinesOutputProcessor:
    """Non-empty output lines."""

    def process(self, output: str) -> Result[list[str], GitChainError]:
        return Ok([line.strip() for line in output.splitlines() if line.strip()])


class FirstLineProcessor:
    """First non-empty line, or None when the output is blank."""

    def process(self, output: str) -> Result[str | None, GitChainError]:
        for line in output.splitlines():
            if line.strip():
                return Ok(line.strip())
        return Ok(None)


class PathOutputProcessor:
    """First output line as a path; blank output is an error."""

    def process(self, output: str) -> Result[Path, GitChainError]:
        match FirstLineProcessor().process(output):
            case Ok(None):
                return Err(OutputParseError("Expected a path, got no output"))
            case Ok(line):
                return Ok(Path(line))
            case Err(err):
                return Err(err)


__all__ = [
    "FirstLineProcessor",
    "LinesOutputProcessor",
    "OutputProcessor",
    "PathOutputProcessor",
    "StringOutputProcessor",
]
