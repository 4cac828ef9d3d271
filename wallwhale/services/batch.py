"""
BatchDownloadManager - Runs many download jobs through one OptimizedClient.

Each request is created and then polled until it is terminal. At most
max_concurrent requests are handled at once; the client's pool still
bounds the HTTP calls underneath.
"""

import asyncio
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from wallwhale.sdk.models import CreateJobRequest, Job, JobStatus
from wallwhale.services.client import OptimizedClient
from wallwhale.services.clock import Clock
from wallwhale.services.errors import JobFailedError, ServiceError
from wallwhale.services.polling import PollConfig


@dataclass(frozen=True)
class BatchConfig:
    """Configuration for batch downloads."""

    max_concurrent: int = 2
    retry_failed: bool = True


@dataclass
class FailedRequest:
    """A batch entry that did not end as completed."""

    request: CreateJobRequest
    error: Exception
    index: int


@dataclass
class BatchResult:
    batch_id: str
    successful: list[Job] = field(default_factory=list)
    failed: list[FailedRequest] = field(default_factory=list)
    total_time: float = 0.0  # seconds


class BatchDownloadManager:
    """
    Creates and waits for a batch of jobs.

    Usage:
        manager = BatchDownloadManager(client, BatchConfig(max_concurrent=3))
        result = await manager.add_batch(requests)
        if result.failed:
            result = await manager.retry_failed(result.failed)
    """

    def __init__(
        self,
        client: OptimizedClient,
        config: BatchConfig | None = None,
        poll_config: PollConfig | None = None,
        clock: Clock | None = None,
        on_progress: Callable[[int, int, int], None] | None = None,
        on_job_complete: Callable[[Job, int], None] | None = None,
        on_job_error: Callable[[Exception, CreateJobRequest, int], None] | None = None,
    ):
        self._client = client
        self.config = config or BatchConfig()
        self._poll_config = poll_config
        self._clock = clock or Clock()
        self._on_progress = on_progress
        self._on_job_complete = on_job_complete
        self._on_job_error = on_job_error

        self._queue: deque[tuple[int, CreateJobRequest]] = deque()
        self._active: dict[str, Job] = {}

    async def add_batch(self, requests: list[CreateJobRequest]) -> BatchResult:
        """Process every request; failures are collected, not raised."""
        started_at = self._clock.now()
        result = BatchResult(
            batch_id=f"batch_{int(started_at.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        )
        total = len(requests)
        self._queue.extend(enumerate(requests))

        workers = min(self.config.max_concurrent, total)
        logger.info(f"[Batch] {result.batch_id}: {total} requests, {workers} workers")
        await asyncio.gather(*(self._worker(result, total) for _ in range(workers)))

        result.total_time = self._clock.elapsed(started_at)
        logger.info(
            f"[Batch] {result.batch_id} done: {len(result.successful)} completed, "
            f"{len(result.failed)} failed"
        )
        return result

    async def _worker(self, result: BatchResult, total: int) -> None:
        while self._queue:
            index, request = self._queue.popleft()
            await self._process(index, request, result)
            if self._on_progress:
                done = len(result.successful) + len(result.failed)
                self._on_progress(done, total, len(result.failed))

    async def _process(self, index: int, request: CreateJobRequest, result: BatchResult) -> None:
        try:
            job = await self._client.create_job(request)
            self._active[job.id] = job
            try:
                job = await self._client.wait_for_job_completion(job.id, self._poll_config)
            finally:
                self._active.pop(job.id, None)

            if job.status != JobStatus.COMPLETED.value:
                raise JobFailedError(job.id, job.error or f"ended as '{job.status}'")
        except Exception as e:
            logger.warning(f"[Batch] Request {index} ({request.url_or_id}) failed: {e}")
            result.failed.append(FailedRequest(request, e, index))
            if self._on_job_error:
                self._on_job_error(e, request, index)
        else:
            result.successful.append(job)
            if self._on_job_complete:
                self._on_job_complete(job, index)

    async def retry_failed(self, failed: list[FailedRequest]) -> BatchResult:
        """Run the failed requests of an earlier batch again."""
        if not self.config.retry_failed:
            raise ServiceError("Retry is disabled", service_id="batch")
        return await self.add_batch([f.request for f in failed])

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_downloads": len(self._active),
            "queue_length": len(self._queue),
            "max_concurrent": self.config.max_concurrent,
        }

    def cancel_all(self) -> int:
        """Drop queued requests. Jobs already created keep running."""
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.info(f"[Batch] Dropped {dropped} queued requests")
        return dropped
