"""
JobPoller - Waits for a download job to reach a terminal state.

States:
- WAITING: Sleeping until the next status check
- CHECKING: Reading the job status
- COMPLETED: Job reached completed/failed/cancelled
- TIMED_OUT: Overall timeout passed first

The poll interval doubles once the wait has lasted longer than
slowdown_after. Status read failures are logged and polling goes on,
so "can't check right now" never turns into "job failed".
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from loguru import logger

from wallwhale.sdk.models import Job
from wallwhale.services.clock import Clock
from wallwhale.services.errors import JobPollingTimeoutError, ServiceError


class PollState(str, Enum):
    WAITING = "WAITING"
    CHECKING = "CHECKING"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class PollConfig:
    """Polling configuration (seconds)."""

    poll_interval: float = 2.0
    timeout: float = 300.0
    slowdown_after: float = 60.0


class JobPoller:
    """
    Polling state machine for one job.

    Usage:
        poller = JobPoller(client.get_job_status, job_id)
        job = await poller.run()
    """

    def __init__(
        self,
        fetch_status: Callable[[str], Awaitable[Job]],
        job_id: str,
        config: PollConfig | None = None,
        clock: Clock | None = None,
        on_status_update: Callable[[Job], None] | None = None,
    ):
        self.job_id = job_id
        self.config = config or PollConfig()
        self._fetch_status = fetch_status
        self._clock = clock or Clock()
        self._on_status_update = on_status_update

        self.state = PollState.WAITING
        self.last_job: Job | None = None
        self.checks = 0
        self._started_at: datetime | None = None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock.elapsed(self._started_at)

    def next_interval(self) -> float:
        """Delay before the next check, doubled for long waits."""
        if self.elapsed > self.config.slowdown_after:
            return self.config.poll_interval * 2
        return self.config.poll_interval

    async def _check(self) -> Job | None:
        """CHECKING transition. Returns the job, or None if the read failed."""
        if self._started_at is None:
            self._started_at = self._clock.now()

        self.state = PollState.CHECKING
        self.checks += 1
        try:
            job = await self._fetch_status(self.job_id)
        except ServiceError as e:
            logger.warning(f"Failed to get job status for {self.job_id}: {e}")
            self.state = PollState.WAITING
            return None

        self.last_job = job
        if self._on_status_update:
            self._on_status_update(job)

        if job.is_terminal:
            self.state = PollState.COMPLETED
            logger.info(f"Job {self.job_id} finished with status '{job.status}'")
        else:
            self.state = PollState.WAITING
        return job

    def _delay_after(self, job: Job | None) -> float:
        if job is None:
            return self.config.poll_interval
        return self.next_interval()

    async def step(self) -> float | None:
        """
        Perform one status check.

        Returns:
            Seconds to wait before the next check, or None once the job
            is in a terminal state.
        """
        job = await self._check()
        if job is not None and job.is_terminal:
            return None
        return self._delay_after(job)

    async def run(self) -> Job:
        """
        Poll until the job is terminal.

        Raises:
            JobPollingTimeoutError: Timeout passed; carries the last known job
        """
        self._started_at = self._clock.now()

        while self.elapsed < self.config.timeout:
            job = await self._check()
            if job is not None and job.is_terminal:
                return job
            await self._clock.sleep(self._delay_after(job))

        self.state = PollState.TIMED_OUT
        raise JobPollingTimeoutError(self.job_id, self.config.timeout, self.last_job)
