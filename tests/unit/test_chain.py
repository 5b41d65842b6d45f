"""Tests for the task chain engine."""

from __future__ import annotations

import asyncio

import pytest

from gitchain.core.cancellation import CancellationSource
from gitchain.core.result import (
    ChainCancelledError,
    ChainStateError,
    ContinuationError,
    Err,
    GitError,
    Ok,
)
from gitchain.tasks.chain import ChainState, TaskChain, batched, fuse, spool


def _cancelled_leaf(source: CancellationSource) -> TaskChain[int]:
    source.cancel()
    return TaskChain.completed(1, token=source.token, name="cancelled-leaf")


class TestRun:
    """Starting and awaiting chains."""

    @pytest.mark.asyncio
    async def test_completed_resolves_to_value(self) -> None:
        chain = TaskChain.completed(42)
        assert await chain.run() == Ok(42)
        assert chain.state is ChainState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failed_resolves_to_error(self) -> None:
        error = GitError("boom")
        chain = TaskChain.failed(error)
        assert await chain.run() == Err(error)
        assert chain.state is ChainState.FAILED

    @pytest.mark.asyncio
    async def test_run_twice_raises(self) -> None:
        chain = TaskChain.completed(1)
        await chain.run()
        with pytest.raises(ChainStateError):
            await chain.run()

    @pytest.mark.asyncio
    async def test_wait_before_start_raises(self) -> None:
        with pytest.raises(ChainStateError):
            await TaskChain.completed(1).wait()

    @pytest.mark.asyncio
    async def test_wait_returns_result_of_chain_started_elsewhere(self) -> None:
        gate = asyncio.Event()

        async def slow() -> str:
            await gate.wait()
            return "done"

        chain = TaskChain.defer(slow)
        task = asyncio.create_task(chain.run())
        await asyncio.sleep(0)
        assert chain.started
        gate.set()
        assert await chain.wait() == Ok("done")
        assert await task == Ok("done")

    @pytest.mark.asyncio
    async def test_run_starts_from_earliest_predecessor(self) -> None:
        order: list[str] = []

        def first() -> int:
            order.append("first")
            return 1

        def second(value: int) -> int:
            order.append("second")
            return value + 1

        chain = TaskChain.defer(first).then(second)
        assert await chain.run() == Ok(2)
        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start_does_no_work(self) -> None:
        source = CancellationSource()
        source.cancel()
        calls: list[int] = []
        chain = TaskChain.defer(lambda: calls.append(1), token=source.token)

        result = await chain.run()

        assert isinstance(result, Err)
        assert isinstance(result.error, ChainCancelledError)
        assert chain.state is ChainState.CANCELLED
        assert calls == []


class TestThen:
    """Success-only and always continuations."""

    @pytest.mark.asyncio
    async def test_success_only_skips_on_failure(self) -> None:
        calls: list[object] = []
        error = GitError("add failed")
        chain = TaskChain.failed(error).then(calls.append)

        assert await chain.run() == Err(error)
        assert chain.state is ChainState.FAILED
        assert calls == []

    @pytest.mark.asyncio
    async def test_always_receives_failure_flag(self) -> None:
        seen: list[tuple[bool, object]] = []

        def record(success: bool, value: object) -> str:
            seen.append((success, value))
            return "handled"

        chain = TaskChain.failed(GitError("nope")).then(record, always=True)

        assert await chain.run() == Ok("handled")
        assert seen == [(False, None)]

    @pytest.mark.asyncio
    async def test_always_receives_value_on_success(self) -> None:
        chain = TaskChain.completed("v").then(lambda ok, value: (ok, value), always=True)
        assert await chain.run() == Ok((True, "v"))

    @pytest.mark.asyncio
    async def test_always_not_called_after_cancellation(self) -> None:
        calls: list[object] = []
        source = CancellationSource()
        chain = _cancelled_leaf(source).then(lambda *args: calls.append(args), always=True)

        result = await chain.run()

        assert isinstance(result, Err) and isinstance(result.error, ChainCancelledError)
        assert chain.state is ChainState.CANCELLED
        assert calls == []

    @pytest.mark.asyncio
    async def test_exception_in_continuation_becomes_failure(self) -> None:
        def explode(_: int) -> int:
            raise ValueError("bad value")

        chain = TaskChain.completed(1).then(explode)
        result = await chain.run()

        assert isinstance(result, Err)
        assert isinstance(result.error, ContinuationError)
        assert isinstance(result.error.__cause__, ValueError)
        assert chain.state is ChainState.FAILED

    @pytest.mark.asyncio
    async def test_async_continuation_is_awaited(self) -> None:
        async def double(value: int) -> int:
            await asyncio.sleep(0)
            return value * 2

        assert await TaskChain.completed(21).then(double).run() == Ok(42)

    def test_second_consumer_is_rejected(self) -> None:
        chain = TaskChain.completed(1)
        chain.then(lambda v: v)
        with pytest.raises(ChainStateError):
            chain.then(lambda v: v)

    @pytest.mark.asyncio
    async def test_attach_after_start_is_rejected(self) -> None:
        chain = TaskChain.completed(1)
        await chain.run()
        with pytest.raises(ChainStateError):
            chain.then(lambda v: v)


class TestThenRun:
    """Sequencing independently built chains."""

    @pytest.mark.asyncio
    async def test_follow_starts_after_predecessor_finishes(self) -> None:
        events: list[str] = []
        gate = asyncio.Event()

        async def first() -> str:
            events.append("first:start")
            await gate.wait()
            events.append("first:end")
            return "a"

        def second() -> str:
            events.append("second")
            return "b"

        chain = TaskChain.defer(first).then_run(TaskChain.defer(second))
        task = asyncio.create_task(chain.run())
        await asyncio.sleep(0.01)
        assert events == ["first:start"]
        gate.set()

        assert await task == Ok("b")
        assert events == ["first:start", "first:end", "second"]

    @pytest.mark.asyncio
    async def test_failed_predecessor_prevents_follow(self) -> None:
        error = GitError("x failed")
        follow = TaskChain.defer(lambda: "never")
        chain = TaskChain.failed(error).then_run(follow)

        assert await chain.run() == Err(error)
        assert not follow.started
        assert follow.state is ChainState.PENDING

    @pytest.mark.asyncio
    async def test_cancelled_predecessor_cancels_follow(self) -> None:
        source = CancellationSource()
        follow = TaskChain.defer(lambda: "never", token=source.token)
        chain = _cancelled_leaf(source).then_run(follow)

        result = await chain.run()

        assert isinstance(result, Err) and isinstance(result.error, ChainCancelledError)
        assert follow.state is ChainState.CANCELLED

    @pytest.mark.asyncio
    async def test_always_runs_follow_after_failure(self) -> None:
        chain = TaskChain.failed(GitError("x")).then_run(TaskChain.completed("y"), always=True)
        assert await chain.run() == Ok("y")


class TestAndThen:
    @pytest.mark.asyncio
    async def test_builds_next_chain_from_value(self) -> None:
        chain = TaskChain.completed(3).and_then(lambda n: TaskChain.completed(n * 10))
        assert await chain.run() == Ok(30)

    @pytest.mark.asyncio
    async def test_plain_value_is_accepted(self) -> None:
        assert await TaskChain.completed(3).and_then(lambda n: n + 1).run() == Ok(4)

    @pytest.mark.asyncio
    async def test_failure_short_circuits(self) -> None:
        calls: list[int] = []
        error = GitError("x")
        chain = TaskChain.failed(error).and_then(calls.append)
        assert await chain.run() == Err(error)
        assert calls == []


class TestFuse:
    """Combining two chains."""

    @pytest.mark.asyncio
    async def test_success_combines_values(self) -> None:
        chain = fuse(TaskChain.completed(2), TaskChain.completed(3), lambda a, b: a * b)
        assert await chain.run() == Ok(6)

    @pytest.mark.asyncio
    async def test_sides_run_concurrently(self) -> None:
        left_started = asyncio.Event()
        right_started = asyncio.Event()

        async def left() -> str:
            left_started.set()
            await asyncio.wait_for(right_started.wait(), timeout=1)
            return "l"

        async def right() -> str:
            right_started.set()
            await asyncio.wait_for(left_started.wait(), timeout=1)
            return "r"

        chain = TaskChain.defer(left).fuse(TaskChain.defer(right), lambda a, b: a + b)
        assert await chain.run() == Ok("lr")

    @pytest.mark.asyncio
    async def test_failure_wins_in_success_only_mode(self) -> None:
        error = GitError("right failed")
        calls: list[object] = []
        chain = fuse(
            TaskChain.completed(1), TaskChain.failed(error), lambda a, b: calls.append((a, b))
        )
        assert await chain.run() == Err(error)
        assert chain.state is ChainState.FAILED
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancellation_wins_over_failure(self) -> None:
        source = CancellationSource()
        chain = fuse(TaskChain.failed(GitError("x")), _cancelled_leaf(source), lambda a, b: None)

        result = await chain.run()

        assert isinstance(result, Err) and isinstance(result.error, ChainCancelledError)
        assert chain.state is ChainState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancellation_in_always_mode(self) -> None:
        source = CancellationSource()
        calls: list[object] = []
        chain = fuse(
            TaskChain.completed(1),
            _cancelled_leaf(source),
            lambda *args: calls.append(args),
            always=True,
        )
        await chain.run()
        assert chain.state is ChainState.CANCELLED
        assert calls == []

    @pytest.mark.asyncio
    async def test_always_mode_folds_failure(self) -> None:
        chain = fuse(
            TaskChain.completed("2.30.1"),
            TaskChain.failed(GitError("lfs missing")),
            lambda ok, a, b: (ok, a, b),
            always=True,
        )
        assert await chain.run() == Ok((False, "2.30.1", None))

    @pytest.mark.asyncio
    async def test_sequential_runs_right_after_left(self) -> None:
        order: list[str] = []

        async def left() -> str:
            await asyncio.sleep(0.01)
            order.append("left")
            return "l"

        def right() -> str:
            order.append("right")
            return "r"

        chain = fuse(TaskChain.defer(left), TaskChain.defer(right), lambda a, b: a + b, sequential=True)
        assert await chain.run() == Ok("lr")
        assert order == ["left", "right"]


class TestBatching:
    def test_spool_splits_into_fixed_size_batches(self) -> None:
        batches = list(spool(list(range(12_000)), 5000))
        assert [len(batch) for batch in batches] == [5000, 5000, 2000]
        assert batches[1][0] == 5000

    def test_spool_rejects_non_positive_size(self) -> None:
        with pytest.raises(ValueError):
            list(spool([1], 0))

    @pytest.mark.asyncio
    async def test_empty_input_resolves_to_empty_value(self) -> None:
        chain = batched([], 10, lambda batch: TaskChain.completed(batch), empty=[])
        assert await chain.run() == Ok([])

    @pytest.mark.asyncio
    async def test_failing_batch_aborts_the_rest(self) -> None:
        seen: list[list[int]] = []

        def factory(batch: list[int]) -> TaskChain[int]:
            def work() -> int:
                seen.append(batch)
                if batch[0] == 2:
                    raise RuntimeError("second batch failed")
                return len(batch)

            return TaskChain.defer(work)

        chain = batched([0, 1, 2, 3, 4], 2, factory, empty=0)
        result = await chain.run()

        assert isinstance(result, Err)
        assert seen == [[0, 1], [2, 3]]


class TestInterruption:
    @pytest.mark.asyncio
    async def test_task_cancellation_marks_chain_cancelled(self) -> None:
        gate = asyncio.Event()

        async def forever() -> None:
            await gate.wait()

        chain = TaskChain.defer(forever)
        task = asyncio.create_task(chain.run())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert chain.state is ChainState.CANCELLED


class TestResult:
    def test_ok_combinators(self) -> None:
        assert Ok(2).map(lambda v: v * 3) == Ok(6)
        assert Ok(2).and_then(lambda v: Err(GitError(str(v)))).is_err()
        assert Ok(2).unwrap_or(0) == 2

    def test_err_combinators(self) -> None:
        error = GitError("x")
        assert Err(error).map(lambda v: v) == Err(error)
        assert Err(error).unwrap_or(0) == 0
        wrapped = Err(error).map_err(lambda e: ContinuationError(e.message))
        assert isinstance(wrapped.error, ContinuationError)
        with pytest.raises(GitError):
            Err(error).unwrap()
