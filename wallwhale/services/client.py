"""
OptimizedClient - Download job client with resilience patterns.

Wraps any JobClient and adds:
- RequestDeduplicator for identical in-flight operations
- CircuitBreaker per operation, failing fast while the API is down
- ConnectionPool for bounded, prioritised, retried requests
- CacheManager for status reads, invalidated on cancel

Request path:
    dedupe -> circuit breaker -> connection pool -> wrapped client
"""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from wallwhale.sdk.models import CreateJobRequest, Job, JobStatus
from wallwhale.services.cache import CacheConfig, CacheManager
from wallwhale.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from wallwhale.services.clock import Clock
from wallwhale.services.deduplicator import RequestDeduplicator, operation_key
from wallwhale.services.errors import JobFailedError
from wallwhale.services.polling import JobPoller, PollConfig
from wallwhale.services.pool import ConnectionPool, PoolConfig

if TYPE_CHECKING:
    from wallwhale.sdk.client import JobClient

T = TypeVar("T")

CLEANUP_JOB_ID = "cache_cleanup"


class OperationPriority(IntEnum):
    """Pool priorities; mutations overtake routine status polling."""

    GET_STATUS = 0
    DOWNLOAD = 1
    CREATE = 2
    CANCEL = 3


@dataclass(frozen=True)
class OptimizationConfig:
    """
    Configuration for OptimizedClient.

    Each component can be switched off with its `enabled` flag; the
    request then skips that layer.
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    download_timeout: float = 120.0  # Per-attempt timeout for archive downloads
    debug: bool = False


def status_cache_key(job_id: str) -> str:
    return f"job:{job_id}:status"


def job_cache_pattern(job_id: str) -> str:
    """Substring shared by every cache key of one job."""
    return f"job:{job_id}:"


class OptimizedClient:
    """
    JobClient decorator with caching, circuit breaking, pooling and dedup.

    Usage:
        async with OptimizedClient(DownloadApiClient(sdk_config)) as client:
            job = await client.create_job(request)
            job = await client.wait_for_job_completion(job.id)
            data = await client.download_job_zip(job.id)

    Every instance owns its own cache, breakers and pool.
    """

    def __init__(
        self,
        base: "JobClient",
        config: OptimizationConfig | None = None,
        clock: Clock | None = None,
    ):
        self._base = base
        self.config = config or OptimizationConfig()
        self._clock = clock or Clock()

        # Initialize components
        self._cache = CacheManager(
            self.config.cache,
            clock=self._clock,
            debug=self.config.debug,
        )
        self._circuit_breakers = CircuitBreakerRegistry(
            self.config.circuit_breaker,
            clock=self._clock,
        )
        self._pool = ConnectionPool(self.config.pool, clock=self._clock)
        self._deduplicator = RequestDeduplicator(debug=self.config.debug)

        self._scheduler: AsyncIOScheduler | None = None

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self._circuit_breakers

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    async def _execute(
        self,
        operation: str,
        args: tuple[Any, ...],
        request_fn: Callable[[], Awaitable[T]],
        priority: OperationPriority,
        timeout: float | None = None,
    ) -> T:
        """Run a request through dedup, circuit breaker and pool."""
        key = operation_key(operation, *args)

        async def pooled() -> T:
            if self.config.pool.enabled:
                return await self._pool.execute(request_fn, int(priority), timeout)
            return await request_fn()

        async def guarded() -> T:
            if self.config.circuit_breaker.enabled:
                return await self._circuit_breakers.get(operation).execute(pooled)
            return await pooled()

        return await self._deduplicator.dedupe(key, guarded)

    async def create_job(self, request: CreateJobRequest) -> Job:
        """Create a job. Never cached."""
        return await self._execute(
            "create_job",
            (request.to_payload(),),
            lambda: self._base.create_job(request),
            OperationPriority.CREATE,
        )

    async def get_job_status(self, job_id: str) -> Job:
        """Read job status, served from cache while fresh."""
        use_cache = self.config.cache.enabled
        cache_key = status_cache_key(job_id)

        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        job = await self._execute(
            "get_job_status",
            (job_id,),
            lambda: self._base.get_job_status(job_id),
            OperationPriority.GET_STATUS,
        )

        if use_cache:
            self._cache.set(cache_key, job)
        return job

    async def cancel_job(self, job_id: str) -> None:
        """Cancel a job and drop its cached state."""
        self._cache.invalidate(job_cache_pattern(job_id))

        await self._execute(
            "cancel_job",
            (job_id,),
            lambda: self._base.cancel_job(job_id),
            OperationPriority.CANCEL,
        )

        # A status read may have re-cached the old state meanwhile
        self._cache.invalidate(job_cache_pattern(job_id))

    async def download_job_zip(self, job_id: str) -> bytes:
        """Download a job's archive. Never cached."""
        return await self._execute(
            "download_job_zip",
            (job_id,),
            lambda: self._base.download_job_zip(job_id),
            OperationPriority.DOWNLOAD,
            timeout=self.config.download_timeout,
        )

    async def wait_for_job_completion(
        self,
        job_id: str,
        poll_config: PollConfig | None = None,
        on_status_update: Callable[[Job], None] | None = None,
    ) -> Job:
        """
        Poll the cached status read until the job is terminal.

        Raises:
            JobPollingTimeoutError: The job did not finish in time
        """
        poller = JobPoller(
            self.get_job_status,
            job_id,
            poll_config,
            clock=self._clock,
            on_status_update=on_status_update,
        )
        return await poller.run()

    async def create_and_download(
        self,
        request: CreateJobRequest,
        path: Path,
        poll_config: PollConfig | None = None,
        on_status_update: Callable[[Job], None] | None = None,
    ) -> Job:
        """
        Create a job, wait for it and save its archive to path.

        A cancelled job is returned without downloading anything.

        Raises:
            JobFailedError: The job finished as failed
            JobPollingTimeoutError: The job did not finish in time
        """
        job = await self.create_job(request)
        job = await self.wait_for_job_completion(job.id, poll_config, on_status_update)

        if job.status == JobStatus.FAILED.value:
            raise JobFailedError(job.id, job.error)
        if job.status != JobStatus.COMPLETED.value:
            logger.warning(f"Job {job.id} ended as '{job.status}', nothing to download")
            return job

        data = await self.download_job_zip(job.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Saved {len(data)} bytes for job {job.id} to {path}")
        return job

    # Maintenance

    def start_maintenance(self, interval_seconds: float = 60.0) -> None:
        """Sweep expired cache entries on a timer."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._cache.cleanup,
            "interval",
            seconds=interval_seconds,
            id=CLEANUP_JOB_ID,
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Cache cleanup scheduled every {interval_seconds}s")

    def stop_maintenance(self) -> None:
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    # Health and status methods

    def get_optimization_stats(self) -> dict[str, Any]:
        """Get aggregated cache, circuit breaker and pool statistics."""
        return {
            "cache": self._cache.get_stats().to_dict(),
            "circuit_breakers": self._circuit_breakers.get_all_status(),
            "open_circuits": self._circuit_breakers.get_open_circuits(),
            "connection_pool": self._pool.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
            "active_requests": self._deduplicator.get_in_flight_count(),
        }

    def clear_optimizations(self) -> None:
        """Clear the cache and close every circuit."""
        self._cache.clear()
        self._circuit_breakers.reset_all()

    async def shutdown(self) -> None:
        """Let pooled requests finish, then clear caches and stop maintenance."""
        self.stop_maintenance()
        await self._pool.drain()
        self.clear_optimizations()
        logger.debug("OptimizedClient shut down")

    async def close(self) -> None:
        """Shut down and close the wrapped client if it can be closed."""
        await self.shutdown()
        close = getattr(self._base, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "OptimizedClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
