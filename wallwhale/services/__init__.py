"""
Service layer infrastructure - resilience patterns for download API calls.

Provides:
- CacheManager: In-memory cache with TTL and LRU eviction
- CircuitBreaker: Prevents cascading failures
- ConnectionPool: Bounded, prioritised requests with retry and timeout
- RequestDeduplicator: Prevents duplicate concurrent requests
- JobPoller: Waits for a job to reach a terminal state
- OptimizedClient: Job client combining all patterns
- BatchDownloadManager: Many jobs through one OptimizedClient
"""

from wallwhale.services.errors import (
    ServiceError,
    CircuitOpenError,
    RequestTimeoutError,
    TransientNetworkError,
    RequestCancelledError,
    ExhaustedRetriesError,
    ApiError,
    JobPollingTimeoutError,
    JobFailedError,
)
from wallwhale.services.clock import Clock
from wallwhale.services.cache import CacheManager, CacheConfig, CacheEntry, CacheStats
from wallwhale.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
    ExponentialBackoffCircuitBreaker,
)
from wallwhale.services.pool import ConnectionPool, PoolConfig, PoolStats
from wallwhale.services.deduplicator import RequestDeduplicator
from wallwhale.services.polling import JobPoller, PollConfig, PollState
from wallwhale.services.client import (
    OperationPriority,
    OptimizationConfig,
    OptimizedClient,
)
from wallwhale.services.batch import (
    BatchConfig,
    BatchDownloadManager,
    BatchResult,
    FailedRequest,
)

__all__ = [
    # Errors
    "ServiceError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "TransientNetworkError",
    "RequestCancelledError",
    "ExhaustedRetriesError",
    "ApiError",
    "JobPollingTimeoutError",
    "JobFailedError",
    "Clock",
    # Cache
    "CacheManager",
    "CacheConfig",
    "CacheEntry",
    "CacheStats",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "ExponentialBackoffCircuitBreaker",
    # Pool
    "ConnectionPool",
    "PoolConfig",
    "PoolStats",
    # Deduplicator
    "RequestDeduplicator",
    # Polling
    "JobPoller",
    "PollConfig",
    "PollState",
    # Client
    "OperationPriority",
    "OptimizationConfig",
    "OptimizedClient",
    # Batch
    "BatchConfig",
    "BatchDownloadManager",
    "BatchResult",
    "FailedRequest",
]
