"""
DownloadApiClient - Plain async client for the WallWhale Download API.

No caching, retries or circuit breaking happen here; wrap it in
OptimizedClient for that.
"""

from pathlib import Path
from typing import Any, Callable, Protocol

import httpx
from loguru import logger

from wallwhale.sdk.models import ApiKeyConfig, CreateJobRequest, Job, SdkConfig
from wallwhale.services.errors import (
    ApiError,
    RequestTimeoutError,
    TransientNetworkError,
)

SERVICE_ID = "wallwhale"


class JobClient(Protocol):
    """Remote job operations shared by the plain and optimized clients."""

    async def create_job(self, request: CreateJobRequest) -> Job: ...

    async def get_job_status(self, job_id: str) -> Job: ...

    async def cancel_job(self, job_id: str) -> None: ...

    async def download_job_zip(self, job_id: str) -> bytes: ...


class DownloadApiClient:
    """
    HTTP client for download jobs.

    Usage:
        async with DownloadApiClient(config) as api:
            job = await api.create_job(build_job_request("acct", "12345"))
            job = await api.wait_for_job_completion(job.id)
            await api.save_job_zip(job.id, Path("12345.zip"))
    """

    def __init__(
        self,
        config: SdkConfig,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = config.base_url.rstrip("/")
        self.auth: ApiKeyConfig = config.auth
        self._timeout = timeout
        self._transport = transport

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.auth.use_header:
            headers["x-api-key"] = self.auth.api_key
        else:
            headers["authorization"] = f"Bearer {self.auth.api_key}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1/downloads{path}"

    async def _send(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and map failures to service errors."""
        client = await self._get_http_client()

        try:
            response = await client.request(
                method=method,
                url=self._url(path),
                headers=self.get_headers(),
                json=json_data,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(SERVICE_ID, self._timeout) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(str(e), service_id=SERVICE_ID) from e

        if response.is_success:
            return response

        message = _error_message(response)
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientNetworkError(
                f"HTTP {response.status_code}: {message}", service_id=SERVICE_ID
            )
        raise ApiError(response.status_code, message, service_id=SERVICE_ID)

    async def create_job(self, request: CreateJobRequest) -> Job:
        """Create a new download job."""
        response = await self._send("POST", "", json_data=request.to_payload())
        job = Job.model_validate(response.json())
        logger.info(f"Created job {job.id} for '{request.url_or_id}'")
        return job

    async def get_job_status(self, job_id: str) -> Job:
        response = await self._send("GET", f"/{job_id}")
        return Job.model_validate(response.json())

    async def cancel_job(self, job_id: str) -> None:
        await self._send("POST", f"/{job_id}/cancel")
        logger.info(f"Cancelled job {job_id}")

    async def download_job_zip(self, job_id: str) -> bytes:
        """Download a completed job's archive."""
        response = await self._send("GET", f"/{job_id}/zip")
        logger.debug(f"Downloaded {len(response.content)} bytes for job {job_id}")
        return response.content

    def get_job_zip_url(self, job_id: str) -> str:
        """
        Direct download URL for a job's archive.

        The URL carries no credentials, so it may not work with
        header-based authentication.
        """
        if self.auth.use_header:
            logger.warning(
                "Direct download URLs may not be compatible with header-based authentication."
            )
        return self._url(f"/{job_id}/zip")

    async def save_job_zip(self, job_id: str, path: Path) -> Path:
        """Download a job's archive and write it to disk."""
        data = await self.download_job_zip(job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Saved job {job_id} archive to {path}")
        return path

    async def wait_for_job_completion(
        self,
        job_id: str,
        poll_interval: float = 2.0,
        timeout: float = 300.0,
        on_status_update: Callable[[Job], None] | None = None,
    ) -> Job:
        """Poll the job until it is completed, failed or cancelled."""
        from wallwhale.services.polling import JobPoller, PollConfig

        poller = JobPoller(
            self.get_job_status,
            job_id,
            PollConfig(poll_interval=poll_interval, timeout=timeout),
            on_status_update=on_status_update,
        )
        return await poller.run()

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("DownloadApiClient closed")

    async def __aenter__(self) -> "DownloadApiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


def _error_message(response: httpx.Response) -> str:
    """Message from a JSON error body, falling back to the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"
