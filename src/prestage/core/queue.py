"""Bounded-concurrency work queues for page rendering.

A WorkerPool runs zero-argument coroutine functions on a fixed number of
worker tasks fed by an asyncio queue. RenderQueue pairs a primary pool
for page renders with a single-worker pool for critical CSS extraction,
which must never run concurrently with itself.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONCURRENCY = 20

_Job = tuple[Callable[[], Awaitable[Any]], "asyncio.Future[Any]"]


class WorkerPool:
    """Runs submitted coroutine functions with at most ``concurrency`` in flight.

    Jobs start in submission order. A failing job resolves its own future
    with the exception and never affects other jobs. A job raising
    CancelledError gets a cancelled future and the worker keeps going
    unless the worker itself is being cancelled. Workers start lazily on
    the first submission, inside the running event loop.
    """

    def __init__(self, concurrency: int) -> None:
        """Initialize pool.

        Args:
            concurrency: Maximum number of jobs in flight

        Raises:
            ValueError: If concurrency is lower than 1
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._concurrency = concurrency
        self._queue: asyncio.Queue[_Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self.active = 0
        self.peak = 0

    @property
    def concurrency(self) -> int:
        """Maximum number of jobs in flight."""
        return self._concurrency

    def submit(self, func: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Schedule a job.

        Args:
            func: Zero-argument callable returning an awaitable

        Returns:
            Future resolved with the job's result or exception
        """
        queue = self._ensure_started()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        queue.put_nowait((func, future))
        return future

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Schedule a job and wait for its result."""
        return await self.submit(func)

    async def join(self) -> None:
        """Wait until every submitted job has settled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop the workers. Jobs still queued are abandoned."""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _ensure_started(self) -> asyncio.Queue[_Job]:
        if self._queue is None:
            self._queue = asyncio.Queue()
            self._workers = [
                asyncio.create_task(self._work(self._queue)) for _ in range(self._concurrency)
            ]
        return self._queue

    async def _work(self, queue: asyncio.Queue[_Job]) -> None:
        while True:
            func, future = await queue.get()
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                result = await func()
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            except BaseException as e:
                if not future.done():
                    future.set_exception(e)
                raise
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self.active -= 1
                queue.task_done()


@dataclass
class QueueOutcome(Generic[T]):
    """Results of a full queue run."""

    completed: list[T] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)


class RenderQueue:
    """Primary render pool plus the serial critical CSS pool."""

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.primary = WorkerPool(concurrency)
        self.critical = WorkerPool(1)

    async def render_all(
        self,
        paths: Iterable[str],
        task: Callable[[str], Awaitable[T]],
    ) -> QueueOutcome[T]:
        """Run ``task`` once per path and wait for the queue to drain.

        A failed task does not cancel its siblings; every path is attempted.

        Args:
            paths: Paths to render, scheduled in order
            task: Coroutine function rendering one path

        Returns:
            QueueOutcome with results in scheduling order and failures by path
        """
        scheduled = [(path, self.primary.submit(functools.partial(task, path))) for path in paths]
        try:
            await self.primary.join()
            await self.critical.join()
        finally:
            await self.primary.close()
            await self.critical.close()

        outcome: QueueOutcome[T] = QueueOutcome()
        results = await asyncio.gather(*(future for _, future in scheduled), return_exceptions=True)
        for (path, _), result in zip(scheduled, results, strict=True):
            if isinstance(result, BaseException):
                outcome.failed[path] = result
            else:
                outcome.completed.append(result)

        logger.debug(
            f"Queue drained: {len(outcome.completed)} done, {len(outcome.failed)} failed, "
            f"peak concurrency {self.primary.peak}"
        )
        return outcome
