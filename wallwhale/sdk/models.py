"""
Download API data models.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Known job states reported by the server."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}
)


class Job(BaseModel):
    """A download job on the server."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    pubfile_id: str = Field(default="", alias="pubfileId")
    status: str  # Unknown states are kept as-is
    account_name: str = Field(default="", alias="accountName")
    save_root: str = Field(default="", alias="saveRoot")
    started_at: int | None = Field(default=None, alias="startedAt")  # epoch ms
    finished_at: int | None = Field(default=None, alias="finishedAt")  # epoch ms
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class CreateJobRequest(BaseModel):
    """Payload for creating a download job."""

    model_config = ConfigDict(populate_by_name=True)

    url_or_id: str = Field(alias="urlOrId")
    account_name: str = Field(alias="accountName")
    save_root: str | None = Field(default=None, alias="saveRoot")

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ApiKeyConfig(BaseModel):
    """API key authentication.

    With use_header the key goes in 'x-api-key', otherwise it is sent
    as a Bearer token.
    """

    api_key: str
    use_header: bool = False


class SdkConfig(BaseModel):
    base_url: str
    auth: ApiKeyConfig


def build_job_request(
    account_name: str,
    url_or_id: str,
    save_root: str | None = None,
) -> CreateJobRequest:
    """Build a create-job request, dropping an empty save root."""
    return CreateJobRequest(
        url_or_id=url_or_id,
        account_name=account_name,
        save_root=save_root or None,
    )
