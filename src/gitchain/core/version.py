"""Numeric version identifiers for minimum-version checks."""

from __future__ import annotations

import re
from dataclasses import dataclass

from gitchain.core.result import Err, Ok, OutputParseError, Result

_VERSION_RE = re.compile(r"(\d+(?:\.\d+){1,3})")


@dataclass(frozen=True, slots=True, order=True)
class Version:
    """A 3- or 4-part numeric version; ordering is lexicographic over parts."""

    parts: tuple[int, ...]

    def __post_init__(self) -> None:
        if not 3 <= len(self.parts) <= 4:
            raise ValueError(f"Version needs 3 or 4 parts, got {self.parts!r}")

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.parts)

    @property
    def major(self) -> int:
        return self.parts[0]

    @property
    def minor(self) -> int:
        return self.parts[1]

    @property
    def patch(self) -> int:
        return self.parts[2]

    @property
    def build(self) -> int | None:
        return self.parts[3] if len(self.parts) == 4 else None

    @classmethod
    def parse(cls, text: str) -> Result[Version, OutputParseError]:
        """Extract the first dotted number from ``text``.

        ``git version 2.30.1.windows.1`` yields 2.30.1 and ``2.11`` is padded
        to 2.11.0.
        """
        match = _VERSION_RE.search(text or "")
        if match is None:
            return Err(OutputParseError("No version number found", context={"text": text}))
        parts = tuple(int(part) for part in match.group(1).split("."))
        if len(parts) == 2:
            parts = (*parts, 0)
        return Ok(cls(parts))


__all__ = ["Version"]
