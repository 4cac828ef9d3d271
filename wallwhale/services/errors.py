"""
Service layer exceptions.
"""

from typing import Any


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class TransientNetworkError(ServiceError):
    """Network-level failure that is worth retrying."""

    pass


class RequestCancelledError(ServiceError):
    """Queued request was cancelled before it was dispatched."""

    pass


class ExhaustedRetriesError(ServiceError):
    """All attempts of a pooled request failed."""

    def __init__(self, service_id: str, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Request to service '{service_id}' failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}",
            service_id=service_id,
        )


class ApiError(ServiceError):
    """Download API answered with a non-success status."""

    def __init__(self, status_code: int, message: str, service_id: str | None = None):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class JobPollingTimeoutError(ServiceError):
    """Job did not reach a terminal state in time."""

    def __init__(self, job_id: str, timeout: float, last_job: Any | None = None):
        self.job_id = job_id
        self.timeout = timeout
        self.last_job = last_job
        last_status = getattr(last_job, "status", None) or "unknown"
        super().__init__(
            f"Job {job_id} timed out after {timeout}s. Last status: {last_status}"
        )


class JobFailedError(ServiceError):
    """Job finished with status 'failed'."""

    def __init__(self, job_id: str, error: str | None = None):
        self.job_id = job_id
        self.error = error
        super().__init__(f"Job {job_id} failed: {error or 'Unknown error'}")
