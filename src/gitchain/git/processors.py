"""Processors for git command output.

- GitStatusProcessor: ``git status --porcelain=v2 --branch -z``
- GitLogProcessor: ``git log`` with the LOG_FORMAT record layout
- GitLocksProcessor: ``git lfs locks --json``
- GitVersionProcessor / GitLfsVersionProcessor: version banners
"""

from __future__ import annotations

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from gitchain.core.result import Err, GitChainError, Ok, OutputParseError, Result

from .models import GitLock, GitLogEntry, GitStatus, GitStatusEntry, Version

# commit, author name, author email, unix time, subject, body
LOG_FORMAT = "%H%x00%an%x00%ae%x00%at%x00%s%x00%b%x1e"

_LOCKS_ADAPTER = TypeAdapter(list[GitLock])


def _safe_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class GitStatusProcessor:
    def process(self, output: str) -> Result[GitStatus, GitChainError]:
        branch: str | None = None
        head: str | None = None
        upstream: str | None = None
        ahead = behind = 0
        entries: list[GitStatusEntry] = []

        records = output.split("\0")
        index = 0
        while index < len(records):
            record = records[index]
            index += 1
            if not record:
                continue

            if record.startswith("#"):
                parts = record.split()
                if len(parts) >= 3 and parts[1] == "branch.oid":
                    head = None if parts[2] == "(initial)" else parts[2]
                elif len(parts) >= 3 and parts[1] == "branch.head":
                    branch = None if parts[2] == "(detached)" else parts[2]
                elif len(parts) >= 3 and parts[1] == "branch.upstream":
                    upstream = parts[2]
                elif len(parts) >= 4 and parts[1] == "branch.ab":
                    ahead = _safe_int(parts[2].lstrip("+"))
                    behind = _safe_int(parts[3].lstrip("-"))
                continue

            kind = record[0]
            if kind == "1":
                fields = record.split(" ", 8)
                if len(fields) < 9:
                    return Err(OutputParseError("Malformed status entry", context={"entry": record}))
                entries.append(GitStatusEntry(fields[8], fields[1][0], fields[1][1]))
            elif kind == "2":
                fields = record.split(" ", 9)
                if len(fields) < 10:
                    return Err(OutputParseError("Malformed rename entry", context={"entry": record}))
                original = records[index] if index < len(records) else None
                index += 1
                entries.append(GitStatusEntry(fields[9], fields[1][0], fields[1][1], original))
            elif kind == "u":
                fields = record.split(" ", 10)
                if len(fields) < 11:
                    return Err(
                        OutputParseError("Malformed unmerged entry", context={"entry": record})
                    )
                entries.append(GitStatusEntry(fields[10], fields[1][0], fields[1][1]))
            elif kind == "?":
                entries.append(GitStatusEntry(record[2:], "?", "?"))
            elif kind == "!":
                continue
            else:
                return Err(OutputParseError("Unknown status record", context={"entry": record}))

        return Ok(
            GitStatus(
                branch=branch,
                upstream=upstream,
                ahead=ahead,
                behind=behind,
                head=head,
                entries=tuple(entries),
            )
        )


class GitLogProcessor:
    def process(self, output: str) -> Result[list[GitLogEntry], GitChainError]:
        entries: list[GitLogEntry] = []
        for record in output.split("\x1e"):
            record = record.lstrip("\n")
            if not record.strip():
                continue
            fields = record.split("\x00")
            if len(fields) < 5:
                return Err(OutputParseError("Malformed log record", context={"record": record}))
            sha, author_name, author_email, ts, summary = fields[:5]
            body = fields[5].strip() if len(fields) > 5 else ""
            entries.append(
                GitLogEntry(
                    commit_id=sha,
                    author_name=author_name,
                    author_email=author_email,
                    timestamp=_safe_int(ts),
                    summary=summary,
                    body=body,
                )
            )
        return Ok(entries)


class GitLocksProcessor:
    def process(self, output: str) -> Result[list[GitLock], GitChainError]:
        text = output.strip()
        if not text:
            return Ok([])
        try:
            return Ok(_LOCKS_ADAPTER.validate_json(text))
        except PydanticValidationError as exc:
            return Err(OutputParseError("Unreadable lock list", context={"error": str(exc)}))


class GitVersionProcessor:
    """Parses ``git version 2.30.1`` (platform suffixes are ignored)."""

    prefix = "git version"

    def process(self, output: str) -> Result[Version, GitChainError]:
        text = output.strip()
        if not text.startswith(self.prefix):
            return Err(OutputParseError("Unexpected version banner", context={"output": text}))
        match Version.parse(text[len(self.prefix) :]):
            case Ok(version):
                return Ok(version)
            case Err(err):
                return Err(err)


class GitLfsVersionProcessor(GitVersionProcessor):
    """Parses ``git-lfs/2.3.4 (GitHub; darwin amd64; go 1.8.3)``."""

    prefix = "git-lfs/"


__all__ = [
    "LOG_FORMAT",
    "GitLfsVersionProcessor",
    "GitLocksProcessor",
    "GitLogProcessor",
    "GitStatusProcessor",
    "GitVersionProcessor",
]
