"""
WallWhale Download API SDK.
"""

from wallwhale.sdk.models import (
    ApiKeyConfig,
    CreateJobRequest,
    Job,
    JobStatus,
    SdkConfig,
    build_job_request,
)
from wallwhale.sdk.client import DownloadApiClient, JobClient

__all__ = [
    "ApiKeyConfig",
    "CreateJobRequest",
    "Job",
    "JobStatus",
    "SdkConfig",
    "build_job_request",
    "DownloadApiClient",
    "JobClient",
]
