"""
ConnectionPool - Bounded-concurrency scheduler for outgoing requests.

Features:
- At most max_connections operations in flight
- Pending operations dispatched by priority (higher first, FIFO on ties)
- Per-attempt timeout, raced against the operation
- Retries with exponential backoff between attempts

Dispatch runs on the next loop iteration after a submission, so requests
submitted together are ordered by priority before any of them starts.
"""

import asyncio
import itertools
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from wallwhale.services.clock import Clock
from wallwhale.services.errors import (
    ExhaustedRetriesError,
    RequestCancelledError,
    RequestTimeoutError,
)

T = TypeVar("T")

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 10.0


@dataclass(frozen=True)
class PoolConfig:
    """Configuration for the connection pool."""

    enabled: bool = True
    max_connections: int = 3
    timeout: float = 10.0  # Seconds per attempt
    retry_attempts: int = 3  # Retries after the first attempt
    drain_poll_interval: float = 0.1


@dataclass
class QueuedOperation:
    """An operation waiting for a free connection."""

    id: str
    operation: Callable[[], Awaitable[Any]]
    priority: int
    enqueued_at: datetime
    future: "asyncio.Future[Any]"
    timeout: float
    sequence: int = 0

    def sort_key(self) -> tuple[int, int]:
        return (-self.priority, self.sequence)


@dataclass
class PoolStats:
    """Connection pool statistics."""

    active_connections: int = 0
    max_connections: int = 0
    queue_length: int = 0
    completed: int = 0
    failed: int = 0
    retries: int = 0
    timeouts: int = 0
    cancelled: int = 0

    @property
    def utilization(self) -> float:
        if self.max_connections == 0:
            return 0.0
        return self.active_connections / self.max_connections

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_connections": self.active_connections,
            "max_connections": self.max_connections,
            "queue_length": self.queue_length,
            "completed": self.completed,
            "failed": self.failed,
            "retries": self.retries,
            "timeouts": self.timeouts,
            "cancelled": self.cancelled,
            "utilization": f"{self.utilization:.2%}",
        }


def backoff_delay(attempt: int) -> float:
    """Delay in seconds before retrying after the given (0-based) attempt."""
    return min(BACKOFF_BASE_SECONDS * 2**attempt, BACKOFF_MAX_SECONDS)


class ConnectionPool:
    """
    Priority-ordered, bounded-concurrency executor with retries.

    Usage:
        pool = ConnectionPool(PoolConfig(max_connections=2))
        job = await pool.execute(lambda: api.create_job(request), priority=2)
    """

    def __init__(
        self,
        config: PoolConfig | None = None,
        clock: Clock | None = None,
        service_id: str = "pool",
    ):
        self.config = config or PoolConfig()
        self.service_id = service_id
        self._clock = clock or Clock()
        self._queue: list[QueuedOperation] = []
        self._active = 0
        self._sequence = itertools.count()
        self._dispatch_scheduled = False
        self._workers: set[asyncio.Task[None]] = set()
        self._abandoned: set[asyncio.Task[Any]] = set()
        self._stats = PoolStats()

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        priority: int = 0,
        timeout: float | None = None,
    ) -> T:
        """
        Run an operation once a connection is free.

        Args:
            operation: Zero-argument coroutine function to run
            priority: Higher values are dispatched first
            timeout: Per-attempt timeout override in seconds

        Raises:
            ExhaustedRetriesError: Every attempt failed; wraps the last error
            RequestCancelledError: The queue was cleared before dispatch
        """
        loop = asyncio.get_running_loop()
        queued = QueuedOperation(
            id=f"req_{uuid.uuid4().hex[:12]}",
            operation=operation,
            priority=priority,
            enqueued_at=self._clock.now(),
            future=loop.create_future(),
            timeout=timeout if timeout is not None else self.config.timeout,
            sequence=next(self._sequence),
        )
        self._queue.append(queued)
        self._schedule_dispatch(loop)
        return await queued.future

    def _schedule_dispatch(self, loop: asyncio.AbstractEventLoop) -> None:
        if not self._dispatch_scheduled:
            self._dispatch_scheduled = True
            loop.call_soon(self._dispatch)

    def _dispatch(self) -> None:
        """Start queued operations while connections are available."""
        self._dispatch_scheduled = False
        self._queue.sort(key=QueuedOperation.sort_key)

        while self._queue and self._active < self.config.max_connections:
            queued = self._queue.pop(0)
            if queued.future.done():
                # Caller went away while waiting
                continue
            self._active += 1
            worker = asyncio.create_task(self._run(queued))
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _run(self, queued: QueuedOperation) -> None:
        try:
            result = await self._attempt_with_retries(queued)
        except Exception as e:
            self._stats.failed += 1
            if not queued.future.done():
                queued.future.set_exception(e)
        else:
            self._stats.completed += 1
            if not queued.future.done():
                queued.future.set_result(result)
        finally:
            # Worker was cancelled; the caller must not wait forever
            if not queued.future.done():
                queued.future.cancel()
            self._active -= 1
            self._schedule_dispatch(asyncio.get_running_loop())

    async def _attempt_with_retries(self, queued: QueuedOperation) -> Any:
        attempts = self.config.retry_attempts + 1

        for attempt in range(attempts):
            try:
                return await self._attempt(queued)
            except Exception as e:
                if attempt == attempts - 1:
                    logger.error(f"[ConnectionPool] {queued.id} failed after {attempts} attempts")
                    raise ExhaustedRetriesError(self.service_id, attempts, e) from e

                delay = backoff_delay(attempt)
                self._stats.retries += 1
                logger.warning(
                    f"[ConnectionPool] {queued.id} attempt {attempt + 1}/{attempts} "
                    f"failed ({type(e).__name__}: {e}), retrying in {delay:.1f}s"
                )
                await self._clock.sleep(delay)

    async def _attempt(self, queued: QueuedOperation) -> Any:
        """Race one call against the timeout without cancelling the call."""
        task = asyncio.ensure_future(queued.operation())
        done, _ = await asyncio.wait({task}, timeout=queued.timeout)
        if task in done:
            return task.result()

        # The call keeps running; its result is dropped when it settles
        self._stats.timeouts += 1
        self._abandoned.add(task)
        task.add_done_callback(self._discard_abandoned)
        raise RequestTimeoutError(self.service_id, queued.timeout)

    def _discard_abandoned(self, task: "asyncio.Task[Any]") -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"[ConnectionPool] Abandoned request failed late: {task.exception()}")

    def clear_queue(self) -> int:
        """Fail every queued (not yet dispatched) operation. Returns the count."""
        cleared = self._queue
        self._queue = []
        for queued in cleared:
            if not queued.future.done():
                queued.future.set_exception(
                    RequestCancelledError(
                        "Request cancelled due to queue clear",
                        service_id=self.service_id,
                    )
                )
        self._stats.cancelled += len(cleared)
        if cleared:
            logger.info(f"[ConnectionPool] Cleared {len(cleared)} queued requests")
        return len(cleared)

    async def drain(self) -> None:
        """Wait until nothing is active or queued."""
        while self._active > 0 or self._queue:
            await self._clock.sleep(self.config.drain_poll_interval)

    def get_stats(self) -> PoolStats:
        """Get a snapshot of pool statistics."""
        return replace(
            self._stats,
            active_connections=self._active,
            max_connections=self.config.max_connections,
            queue_length=len(self._queue),
        )
