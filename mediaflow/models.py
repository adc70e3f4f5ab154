"""
Pydantic models and enums shared by the orchestrator, API and client.

Attributes are snake_case in Python; the wire format (API bodies, plan JSON)
is camelCase through the alias generator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# ── Status Enums ─────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_EXECUTION_STATUSES = {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED}


class WaitingStrategy(str, Enum):
    WEBHOOK = "webhook"
    POLLING = "polling"
    # Provider answered inline; the cached result is read back through polling
    SYNCHRONOUS = "synchronous"


class MediaType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"
    TEXT = "text"


class OperationType(str, Enum):
    GENERATE = "generate"
    GENERATE_IMAGE = "generateImage"
    GENERATE_AUDIO = "generateAudio"
    MERGE = "merge"
    REMOVE_BACKGROUND = "removeBackground"
    REMOVE_IMAGE_BACKGROUND = "removeImageBackground"
    TRANSCRIBE = "transcribe"
    ADD_SUBTITLES = "addSubtitles"
    REPLACE_GREEN_SCREEN = "replaceGreenScreen"
    LAYER = "layer"


# ── Provider I/O ─────────────────────────────────────────────────────────────

class MediaOutput(CamelModel):
    type: MediaType
    url: str
    mime_type: Optional[str] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None


class ParseResult(CamelModel):
    """Normalized provider payload: one of completed / failed / processing."""
    status: JobStatus
    outputs: list[MediaOutput] = Field(default_factory=list)
    error: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Non-media results (e.g. transcript chunks)
    data: Optional[dict[str, Any]] = None


class ProviderCapabilities(CamelModel):
    supports_webhooks: bool = False
    supports_polling: bool = True
    default_strategy: WaitingStrategy = WaitingStrategy.POLLING


class GenerationStart(CamelModel):
    provider_job_id: str
    waiting_strategy: WaitingStrategy


class ProviderJobStatus(CamelModel):
    status: JobStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    progress: Optional[float] = None


# ── Execution Plan (wire contract) ───────────────────────────────────────────

class JobNode(CamelModel):
    id: str
    type: OperationType
    params: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    output: Optional[str] = None


class ExecutionPlan(CamelModel):
    jobs: list[JobNode] = Field(..., min_length=1)
    base_execution_id: Optional[str] = None


class ExecuteOptions(CamelModel):
    webhook: Optional[str] = None
    webhook_secret: Optional[str] = None
    base_execution_id: Optional[str] = None
    provider_api_keys: dict[str, str] = Field(default_factory=dict)


class ExecuteRequest(CamelModel):
    execution_plan: ExecutionPlan
    options: ExecuteOptions = Field(default_factory=ExecuteOptions)


class ExecuteResponse(CamelModel):
    execution_id: str
    status: ExecutionStatus
    created_at: str


# ── Persisted Records ────────────────────────────────────────────────────────

class JobProgress(CamelModel):
    stage: str = "queued"
    percentage: int = 0


class ExecutionRecord(CamelModel):
    id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    execution_plan: dict[str, Any] = Field(default_factory=dict)
    base_execution_id: Optional[str] = None
    provider_api_keys: dict[str, str] = Field(default_factory=dict)
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    webhook_delivered_at: Optional[str] = None
    webhook_delivery_attempts: int = 0
    webhook_delivery_error: Optional[str] = None


class JobRecord(CamelModel):
    id: str
    execution_id: str
    job_id: str
    # Index in the submitted plan; list_jobs returns plan order
    position: int = 0
    operation: OperationType
    status: JobStatus = JobStatus.QUEUED
    dependencies: list[str] = Field(default_factory=list)
    params: dict[str, Any] = Field(default_factory=dict)
    progress: JobProgress = Field(default_factory=JobProgress)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    provider_job_id: Optional[str] = None
    waiting_strategy: Optional[WaitingStrategy] = None
    model_id: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


# ── Status Views ─────────────────────────────────────────────────────────────

class JobStatusView(CamelModel):
    job_id: str
    operation: OperationType
    status: JobStatus
    stage: str = ""
    progress: int = 0
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class ExecutionStatusResponse(CamelModel):
    execution_id: str
    status: ExecutionStatus
    progress: int = 0
    total_jobs: int = 0
    completed_jobs: int = 0
    current_job: Optional[str] = None
    jobs: list[JobStatusView] = Field(default_factory=list)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class PipelineProgress(CamelModel):
    """Snapshot handed to the client's progress callback on every poll."""
    current_job: Optional[str] = None
    progress: int = 0
    total_jobs: int = 0
    completed_jobs: int = 0
