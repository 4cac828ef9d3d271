"""Unit tests for the HTTP download client, using httpx.MockTransport."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from wallwhale.sdk import (
    ApiKeyConfig,
    DownloadApiClient,
    SdkConfig,
    build_job_request,
)
from wallwhale.services.errors import (
    ApiError,
    RequestTimeoutError,
    TransientNetworkError,
)

JOB_BODY = {
    "id": "job_1",
    "pubfileId": "12345",
    "status": "downloading",
    "accountName": "acct",
    "saveRoot": "/data",
    "startedAt": 1700000000000,
}


class Recorder:
    """MockTransport handler that records requests and replies from a callable."""

    def __init__(self, reply) -> None:
        self.reply = reply
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.reply(request)


def make_client(
    reply,
    use_header: bool = False,
    base_url: str = "http://api.test",
) -> tuple[DownloadApiClient, Recorder]:
    recorder = Recorder(reply)
    config = SdkConfig(base_url=base_url, auth=ApiKeyConfig(api_key="secret", use_header=use_header))
    return DownloadApiClient(config, transport=httpx.MockTransport(recorder)), recorder


class TestAuthentication:
    """Tests for API key placement."""

    def test_bearer_by_default(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(200))

        headers = client.get_headers()

        assert headers["authorization"] == "Bearer secret"
        assert "x-api-key" not in headers

    def test_header_key(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(200), use_header=True)

        headers = client.get_headers()

        assert headers["x-api-key"] == "secret"
        assert "authorization" not in headers

    @pytest.mark.asyncio
    async def test_headers_sent_on_requests(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(200, json=JOB_BODY), use_header=True)

        async with client:
            await client.get_job_status("job_1")

        assert recorder.requests[0].headers["x-api-key"] == "secret"


class TestJobOperations:
    """Tests for the job endpoints."""

    @pytest.mark.asyncio
    async def test_create_job_posts_aliased_payload(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(201, json=JOB_BODY))

        async with client:
            job = await client.create_job(build_job_request("acct", "12345", "/data"))

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url == "http://api.test/api/v1/downloads"
        assert json.loads(request.content) == {
            "urlOrId": "12345",
            "accountName": "acct",
            "saveRoot": "/data",
        }
        assert job.id == "job_1"
        assert job.pubfile_id == "12345"

    @pytest.mark.asyncio
    async def test_create_job_omits_empty_save_root(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(201, json=JOB_BODY))

        async with client:
            await client.create_job(build_job_request("acct", "12345", ""))

        assert "saveRoot" not in json.loads(recorder.requests[0].content)

    @pytest.mark.asyncio
    async def test_get_job_status(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(200, json=JOB_BODY))

        async with client:
            job = await client.get_job_status("job_1")

        assert recorder.requests[0].url.path == "/api/v1/downloads/job_1"
        assert job.status == "downloading"
        assert job.started_at == 1700000000000
        assert job.finished_at is None
        assert not job.is_terminal

    @pytest.mark.asyncio
    async def test_unknown_status_is_kept(self) -> None:
        body = {**JOB_BODY, "status": "queued_remote"}
        client, _ = make_client(lambda r: httpx.Response(200, json=body))

        async with client:
            job = await client.get_job_status("job_1")

        assert job.status == "queued_remote"
        assert not job.is_terminal

    @pytest.mark.asyncio
    async def test_cancel_job_accepts_empty_response(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(204))

        async with client:
            await client.cancel_job("job_1")

        assert recorder.requests[0].method == "POST"
        assert recorder.requests[0].url.path == "/api/v1/downloads/job_1/cancel"

    @pytest.mark.asyncio
    async def test_download_returns_bytes(self) -> None:
        client, recorder = make_client(lambda r: httpx.Response(200, content=b"PK\x03\x04zip"))

        async with client:
            data = await client.download_job_zip("job_1")

        assert data == b"PK\x03\x04zip"
        assert recorder.requests[0].url.path == "/api/v1/downloads/job_1/zip"

    @pytest.mark.asyncio
    async def test_save_job_zip_writes_file(self, tmp_path: Path) -> None:
        client, _ = make_client(lambda r: httpx.Response(200, content=b"zipdata"))
        target = tmp_path / "out" / "job_1.zip"

        async with client:
            saved = await client.save_job_zip("job_1", target)

        assert saved == target
        assert target.read_bytes() == b"zipdata"

    @pytest.mark.asyncio
    async def test_wait_for_job_completion(self) -> None:
        statuses = iter(["pending", "completed"])
        client, recorder = make_client(
            lambda r: httpx.Response(200, json={**JOB_BODY, "status": next(statuses)})
        )

        async with client:
            job = await client.wait_for_job_completion("job_1", poll_interval=0.01, timeout=5)

        assert job.status == "completed"
        assert len(recorder.requests) == 2


class TestUrls:
    """Tests for URL construction."""

    def test_trailing_slash_stripped(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(200), base_url="http://api.test/")

        assert client.get_job_zip_url("job_1") == "http://api.test/api/v1/downloads/job_1/zip"

    def test_zip_url_with_header_auth(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(200), use_header=True)

        assert client.get_job_zip_url("j").endswith("/j/zip")


class TestErrorMapping:
    """Tests for translating HTTP failures into service errors."""

    @pytest.mark.asyncio
    async def test_client_error_uses_body_message(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(404, json={"message": "Job not found"}))

        async with client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_job_status("missing")

        assert exc_info.value.status_code == 404
        assert str(exc_info.value) == "Job not found"

    @pytest.mark.asyncio
    async def test_client_error_without_body_uses_reason(self) -> None:
        client, _ = make_client(lambda r: httpx.Response(403))

        async with client:
            with pytest.raises(ApiError, match="Forbidden"):
                await client.cancel_job("job_1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_server_errors_are_transient(self, status_code: int) -> None:
        client, _ = make_client(lambda r: httpx.Response(status_code))

        async with client:
            with pytest.raises(TransientNetworkError, match=str(status_code)):
                await client.get_job_status("job_1")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(refuse)

        async with client:
            with pytest.raises(TransientNetworkError):
                await client.get_job_status("job_1")

    @pytest.mark.asyncio
    async def test_timeout_maps_to_request_timeout(self) -> None:
        def stall(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client, _ = make_client(stall)

        async with client:
            with pytest.raises(RequestTimeoutError):
                await client.download_job_zip("job_1")
