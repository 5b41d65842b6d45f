"""Composable asynchronous task chains.

A TaskChain is a node of work that resolves to ``Result[T, GitChainError]``.
Nodes are linked backwards: each continuation holds its predecessor(s) and
nothing points forward, so a chain graph is acyclic by construction and is
released together with its tail node.

Building blocks:
    - then(fn): success-only continuation receiving the predecessor value
    - then(fn, always=True): continuation receiving (success, value | None)
    - then_run(other): sequence an independently built chain after this one
    - and_then(fn): build the follow-up chain from this chain's value
    - fuse(a, b, fn): combine two chains once both are terminal
    - batched(items, size, factory): one chain per batch, linked in order

Terminal states:
    SUCCEEDED -> Ok(value)
    FAILED    -> Err(GitChainError)
    CANCELLED -> Err(ChainCancelledError)

A chain is started once. ``run()`` on a node that already started raises
ChainStateError; everything else resolves to a Result instead of raising.

Usage:
    chain = client.add(files).then_run(client.commit("msg", ""))
    match await chain.run():
        case Ok(output):
            ...
        case Err(ChainCancelledError()):
            ...
        case Err(err):
            ...
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterator, Sequence
from enum import Enum, auto
from typing import Any, Generic, TypeVar

from gitchain.core.cancellation import NEVER_CANCELLED, CancellationToken
from gitchain.core.console import get_logger
from gitchain.core.result import (
    ChainCancelledError,
    ChainStateError,
    ContinuationError,
    Err,
    GitChainError,
    Ok,
    Result,
)

logger = get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")
ItemT = TypeVar("ItemT")


class ChainState(Enum):
    """Lifecycle of a chain node. States only move forward."""

    PENDING = auto()  # Not yet started
    RUNNING = auto()  # Inputs resolved, own work in progress
    SUCCEEDED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({ChainState.SUCCEEDED, ChainState.FAILED, ChainState.CANCELLED})
_RANK = {ChainState.PENDING: 0, ChainState.RUNNING: 1}


def _is_cancelled(result: Result[Any, GitChainError]) -> bool:
    return isinstance(result, Err) and isinstance(result.error, ChainCancelledError)


class TaskChain(Generic[T]):
    """Base chain node. Subclasses implement ``_resolve``."""

    def __init__(self, token: CancellationToken | None = None, *, name: str | None = None) -> None:
        self._token = token or NEVER_CANCELLED
        self.name = name or type(self).__name__
        self._state = ChainState.PENDING
        self._result: Result[T, GitChainError] | None = None
        self._started = False
        self._consumed_by: str | None = None
        self._done: asyncio.Event | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} {self._state.name}>"

    @property
    def state(self) -> ChainState:
        return self._state

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def started(self) -> bool:
        return self._started

    @property
    def result(self) -> Result[T, GitChainError] | None:
        """Terminal result, or None while the chain has not finished."""
        return self._result

    @property
    def succeeded(self) -> bool:
        return self._state is ChainState.SUCCEEDED

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self) -> Result[T, GitChainError]:
        """Start the chain from its earliest unstarted predecessor.

        Raises:
            ChainStateError: If this node was already started.
        """
        if self._started:
            raise ChainStateError(
                f"Chain {self.name!r} was already started", context={"state": self._state.name}
            )
        return await self._execute()

    async def wait(self) -> Result[T, GitChainError]:
        """Await the terminal result of a chain started elsewhere.

        Raises:
            ChainStateError: If nothing has started this node.
        """
        if not self._started:
            raise ChainStateError(f"Chain {self.name!r} has not been started")
        return await self._execute()

    async def _execute(self) -> Result[T, GitChainError]:
        if self._started:
            if self._result is None:
                assert self._done is not None
                await self._done.wait()
            assert self._result is not None
            return self._result

        self._started = True
        self._done = asyncio.Event()
        try:
            outcome = await self._resolve()
        except asyncio.CancelledError:
            self._finish(Err(ChainCancelledError(f"{self.name} was interrupted")))
            raise
        self._finish(outcome)
        return outcome

    async def _resolve(self) -> Result[T, GitChainError]:
        raise NotImplementedError

    def _inputs(self) -> tuple[TaskChain[Any], ...]:
        """Predecessors this node consumes."""
        return ()

    def _start_work(self) -> bool:
        """Move to RUNNING unless cancellation was requested first."""
        if self._token.is_cancelled:
            return False
        self._transition(ChainState.RUNNING)
        return True

    def _cancelled(self) -> Err[ChainCancelledError]:
        return Err(ChainCancelledError(f"{self.name} was cancelled"))

    def _transition(self, new: ChainState) -> None:
        current = self._state
        if current.is_terminal or (not new.is_terminal and _RANK[new] < _RANK[current]):
            raise ChainStateError(
                f"Illegal transition {current.name} -> {new.name}", context={"chain": self.name}
            )
        self._state = new

    def _finish(self, outcome: Result[T, GitChainError]) -> None:
        match outcome:
            case Ok(_):
                state = ChainState.SUCCEEDED
            case Err(ChainCancelledError()):
                state = ChainState.CANCELLED
            case Err(_):
                state = ChainState.FAILED
        self._transition(state)
        self._result = outcome
        if self._done is not None:
            self._done.set()
        if state is ChainState.FAILED:
            logger.debug("%s failed: %s", self.name, outcome.error)  # type: ignore[union-attr]
        else:
            logger.debug("%s -> %s", self.name, state.name)

    def _abandon(self, error: ChainCancelledError) -> None:
        """Mark this node and its unstarted inputs CANCELLED without doing work."""
        if self._started:
            return
        self._started = True
        self._done = asyncio.Event()
        self._finish(Err(error))
        for upstream in self._inputs():
            upstream._abandon(error)

    def _claim(self, consumer: str) -> None:
        if self._consumed_by is not None:
            raise ChainStateError(
                f"Result of {self.name!r} is already consumed by {self._consumed_by!r}",
                context={"consumer": consumer},
            )
        if self._started:
            raise ChainStateError(
                f"Cannot attach {consumer!r} to {self.name!r} after it started",
                context={"state": self._state.name},
            )
        self._consumed_by = consumer

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def then(
        self,
        fn: Callable[..., Any],
        *,
        always: bool = False,
        name: str | None = None,
    ) -> TaskChain[Any]:
        """Continue with ``fn``.

        Success-only (default): ``fn(value)``; a failed or cancelled
        predecessor is passed through without calling ``fn``.
        Always: ``fn(success, value_or_none)`` runs after success or failure,
        never after cancellation.
        """
        return _Continuation(self, fn, always=always, name=name)

    def then_run(
        self, other: TaskChain[U], *, always: bool = False, name: str | None = None
    ) -> TaskChain[U]:
        """Run ``other`` after this chain and resolve to its result."""
        return _Sequence(self, other, always=always, name=name)

    def and_then(
        self, fn: Callable[[T], TaskChain[U] | U], *, name: str | None = None
    ) -> TaskChain[U]:
        """Build the next chain from this chain's value and run it."""
        return _Bind(self, fn, name=name)

    def fuse(
        self,
        other: TaskChain[U],
        fn: Callable[..., V],
        *,
        always: bool = False,
        sequential: bool = False,
        name: str | None = None,
    ) -> TaskChain[V]:
        return fuse(self, other, fn, always=always, sequential=sequential, name=name)

    # ------------------------------------------------------------------
    # Leaves
    # ------------------------------------------------------------------

    @staticmethod
    def completed(
        value: U, *, token: CancellationToken | None = None, name: str | None = None
    ) -> TaskChain[U]:
        """A leaf that resolves to ``value`` without spawning anything."""
        return _Completed(Ok(value), token=token, name=name or "completed")

    @staticmethod
    def failed(
        error: GitChainError, *, token: CancellationToken | None = None, name: str | None = None
    ) -> TaskChain[Any]:
        """A leaf that resolves to ``Err(error)``."""
        return _Completed(Err(error), token=token, name=name or "failed")

    @staticmethod
    def defer(
        fn: Callable[[], U], *, token: CancellationToken | None = None, name: str | None = None
    ) -> TaskChain[U]:
        """A leaf that computes ``fn()`` when the chain runs."""
        return _Deferred(fn, token=token, name=name)


class _Completed(TaskChain[T]):
    def __init__(
        self,
        outcome: Result[T, GitChainError],
        *,
        token: CancellationToken | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(token, name=name)
        self._outcome = outcome

    async def _resolve(self) -> Result[T, GitChainError]:
        if not self._start_work():
            return self._cancelled()
        return self._outcome


async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
    value = fn(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


def _continuation_error(node: TaskChain[Any], exc: Exception) -> Err[ContinuationError]:
    error = ContinuationError(
        f"{node.name} raised {type(exc).__name__}: {exc}", context={"chain": node.name}
    )
    error.__cause__ = exc
    return Err(error)


class _Deferred(TaskChain[T]):
    def __init__(
        self,
        fn: Callable[[], T],
        *,
        token: CancellationToken | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(token, name=name or getattr(fn, "__name__", None))
        self._fn = fn

    async def _resolve(self) -> Result[T, GitChainError]:
        if not self._start_work():
            return self._cancelled()
        try:
            return Ok(await _invoke(self._fn))
        except Exception as exc:
            return _continuation_error(self, exc)


class _Continuation(TaskChain[U]):
    def __init__(
        self,
        predecessor: TaskChain[T],
        fn: Callable[..., U],
        *,
        always: bool,
        name: str | None,
    ) -> None:
        label = name or f"{predecessor.name}.then({getattr(fn, '__name__', 'fn')})"
        super().__init__(predecessor.token, name=label)
        predecessor._claim(label)
        self._predecessor = predecessor
        self._fn = fn
        self._always = always

    def _inputs(self) -> tuple[TaskChain[Any], ...]:
        return (self._predecessor,)

    async def _resolve(self) -> Result[U, GitChainError]:
        upstream = await self._predecessor._execute()
        if _is_cancelled(upstream):
            return upstream  # type: ignore[return-value]
        if isinstance(upstream, Err) and not self._always:
            return upstream
        if not self._start_work():
            return self._cancelled()

        try:
            match upstream:
                case Ok(value) if self._always:
                    produced = await _invoke(self._fn, True, value)
                case Ok(value):
                    produced = await _invoke(self._fn, value)
                case Err(_):
                    produced = await _invoke(self._fn, False, None)
        except Exception as exc:
            return _continuation_error(self, exc)
        return Ok(produced)


class _Sequence(TaskChain[U]):
    def __init__(
        self,
        predecessor: TaskChain[T],
        follow: TaskChain[U],
        *,
        always: bool,
        name: str | None,
    ) -> None:
        label = name or f"{predecessor.name}>{follow.name}"
        super().__init__(predecessor.token, name=label)
        predecessor._claim(label)
        follow._claim(label)
        self._predecessor = predecessor
        self._follow = follow
        self._always = always

    def _inputs(self) -> tuple[TaskChain[Any], ...]:
        return (self._predecessor, self._follow)

    async def _resolve(self) -> Result[U, GitChainError]:
        upstream = await self._predecessor._execute()
        if _is_cancelled(upstream) or self._token.is_cancelled:
            cancelled = self._cancelled()
            self._follow._abandon(cancelled.error)
            return cancelled
        if isinstance(upstream, Err) and not self._always:
            return upstream
        self._transition(ChainState.RUNNING)
        return await self._follow._execute()


class _Bind(TaskChain[U]):
    def __init__(
        self,
        predecessor: TaskChain[T],
        fn: Callable[[T], TaskChain[U] | U],
        *,
        name: str | None,
    ) -> None:
        label = name or f"{predecessor.name}.and_then({getattr(fn, '__name__', 'fn')})"
        super().__init__(predecessor.token, name=label)
        predecessor._claim(label)
        self._predecessor = predecessor
        self._fn = fn

    def _inputs(self) -> tuple[TaskChain[Any], ...]:
        return (self._predecessor,)

    async def _resolve(self) -> Result[U, GitChainError]:
        upstream = await self._predecessor._execute()
        if isinstance(upstream, Err):
            return upstream
        if not self._start_work():
            return self._cancelled()

        try:
            follow = await _invoke(self._fn, upstream.value)
        except Exception as exc:
            return _continuation_error(self, exc)
        if not isinstance(follow, TaskChain):
            return Ok(follow)
        try:
            follow._claim(self.name)
        except ChainStateError as exc:
            return Err(exc)
        return await follow._execute()


class _Fuse(TaskChain[V]):
    def __init__(
        self,
        left: TaskChain[T],
        right: TaskChain[U],
        fn: Callable[..., V],
        *,
        always: bool,
        sequential: bool,
        name: str | None,
    ) -> None:
        label = name or f"fuse({left.name}, {right.name})"
        super().__init__(left.token, name=label)
        left._claim(label)
        right._claim(label)
        self._left = left
        self._right = right
        self._fn = fn
        self._always = always
        self._sequential = sequential

    def _inputs(self) -> tuple[TaskChain[Any], ...]:
        return (self._left, self._right)

    async def _gather(self) -> tuple[Result[T, GitChainError], Result[U, GitChainError]]:
        if not self._sequential:
            return await asyncio.gather(self._left._execute(), self._right._execute())
        left = await self._left._execute()
        if _is_cancelled(left) or self._token.is_cancelled:
            self._right._abandon(ChainCancelledError(f"{self.name} was cancelled"))
        return left, await self._right._execute()

    async def _resolve(self) -> Result[V, GitChainError]:
        left, right = await self._gather()
        for side in (left, right):
            if _is_cancelled(side):
                return side  # type: ignore[return-value]
        if not self._always:
            for side in (left, right):
                if isinstance(side, Err):
                    return side
        if not self._start_work():
            return self._cancelled()

        try:
            if self._always:
                produced = await _invoke(
                    self._fn,
                    left.is_ok() and right.is_ok(),
                    left.unwrap_or(None),  # type: ignore[arg-type]
                    right.unwrap_or(None),  # type: ignore[arg-type]
                )
            else:
                produced = await _invoke(self._fn, left.unwrap(), right.unwrap())
        except Exception as exc:
            return _continuation_error(self, exc)
        return Ok(produced)


def fuse(
    left: TaskChain[T],
    right: TaskChain[U],
    fn: Callable[..., V],
    *,
    always: bool = False,
    sequential: bool = False,
    name: str | None = None,
) -> TaskChain[V]:
    """Combine two chains into one once both reach a terminal state.

    Both sides run concurrently unless ``sequential`` is set, in which case
    ``right`` starts after ``left`` finishes. The fused chain is CANCELLED if
    either side was cancelled. Otherwise, success-only mode fails with the
    first failing side and calls ``fn(left, right)`` when both succeeded;
    always mode calls ``fn(success, left_or_none, right_or_none)``.
    """
    return _Fuse(left, right, fn, always=always, sequential=sequential, name=name)


def spool(items: Sequence[ItemT], size: int) -> Iterator[list[ItemT]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def batched(
    items: Sequence[ItemT],
    size: int,
    factory: Callable[[list[ItemT]], TaskChain[U]],
    *,
    empty: U,
    token: CancellationToken | None = None,
) -> TaskChain[U]:
    """Link one chain per batch in success-only order.

    A failing batch prevents the remaining batches from starting. The result
    is the last batch's result, or ``empty`` when there are no items.
    """
    chain: TaskChain[U] | None = None
    for batch in spool(items, size):
        current = factory(batch)
        chain = current if chain is None else chain.then_run(current)
    if chain is None:
        return TaskChain.completed(empty, token=token, name="empty-batch")
    return chain


__all__ = [
    "ChainState",
    "TaskChain",
    "batched",
    "fuse",
    "spool",
]
