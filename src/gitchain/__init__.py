"""gitchain - composable asynchronous git task chains and repository state.

This package drives git as chains of external-process invocations that are
ordered, fused and cancelled as a unit, and keeps an in-memory model of
repository state that follows change notifications from a repository manager.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
