import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    succeeded = "succeeded"
    failed = "failed"


# Provider vocabulary, matched case-insensitively
PROVIDER_STATUSES = {
    "queueing": JobStatus.pending,
    "pending": JobStatus.pending,
    "preparing": JobStatus.processing,
    "processing": JobStatus.processing,
    "success": JobStatus.succeeded,
}


def parse_status(status: Optional[str], status_msg: Optional[str] = None) -> JobStatus:
    """Maps a provider status string (and base response message) to a JobStatus.

    A success status only counts when the base response message, if given, is
    also "success".
    """
    message = (status_msg or "").strip().lower()
    mapped = PROVIDER_STATUSES.get((status or "").strip().lower())
    if mapped == JobStatus.succeeded and status_msg is not None and message != "success":
        mapped = None
    if mapped is not None:
        return mapped
    if message == "processing":
        return JobStatus.processing
    return JobStatus.failed


class GenerationOutcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"
    cancelled = "cancelled"


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    prompt: str
    model: str = "T2V-01-Director"


class BaseResp(BaseModel):
    status_code: int = 0
    status_msg: str = ""


class SubmitResponse(BaseModel):
    task_id: Optional[str] = None
    base_resp: BaseResp = Field(default_factory=BaseResp)


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str = ""
    status: str = ""
    file_id: Optional[str] = None
    base_resp: BaseResp = Field(default_factory=BaseResp)

    @property
    def job_status(self) -> JobStatus:
        return parse_status(self.status, self.base_resp.status_msg)


class FileInfo(BaseModel):
    file_id: Optional[str] = None
    filename: Optional[str] = None
    download_url: Optional[str] = None
    backup_download_url: Optional[str] = None


class RetrieveResponse(BaseModel):
    file: Optional[FileInfo] = None
    base_resp: BaseResp = Field(default_factory=BaseResp)


class GenerationResult(BaseModel):
    outcome: GenerationOutcome
    video_url: Optional[str] = None
    error: Optional[str] = None
    task_id: Optional[str] = None
    file_id: Optional[str] = None
    attempts: int = 0
    total_seconds: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == GenerationOutcome.succeeded


class ProviderCredentials(BaseModel):
    api_key: str = ""
    group_id: str = ""

    @classmethod
    def from_env(cls) -> "ProviderCredentials":
        return cls(
            api_key=os.getenv("VIDEO_GEN_API_KEY", ""),
            group_id=os.getenv("VIDEO_GEN_GROUP_ID", ""),
        )

    def validate_credentials(self) -> bool:
        return bool(self.api_key.strip()) and bool(self.group_id.strip())

    @property
    def authorization(self) -> str:
        return f"Bearer {self.api_key}"


class GenerationConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model: str = "T2V-01-Director"
    max_submit_retries: int = 3
    retry_delay: float = 2.0
    poll_interval: float = 5.0
    max_poll_attempts: int = 60  # ~5 minutes at the default interval
    tick_interval: float = 1.0
    request_timeout: Optional[float] = None
