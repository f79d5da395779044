from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkerState(str, Enum):
    """
    Status for en worker slot.

    Workflow: Idle -> ClaimingJob -> Dispatched -> (Succeeded | Failed) -> Idle
    Terminal: -> Drained (cursor exhausted or shutdown requested)
    """

    IDLE = "Idle"
    CLAIMING_JOB = "ClaimingJob"
    DISPATCHED = "Dispatched"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    DRAINED = "Drained"


class RunState(str, Enum):
    """Global orchestrator state: Initializing -> Running -> Draining -> Completed"""

    INITIALIZING = "Initializing"
    RUNNING = "Running"
    DRAINING = "Draining"
    COMPLETED = "Completed"


class FailureKind(str, Enum):
    TRANSFER = "Transfer"  # Fetch or relay error reported by the job itself
    WORKER_FAULT = "WorkerFault"  # Isolated unit died without reporting


class UploadOutcome(str, Enum):
    UPLOADED = "Uploaded"
    ALREADY_EXISTS = "AlreadyExists"


class Job(BaseModel):
    """
    Immutable descriptor for one fetch-and-relay unit of work.

    Identity is ``index``; it is stable across runs because the job list is
    re-derived from the same static input every time. Unknown keys in the
    input are kept as passthrough metadata.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    index: int = Field(..., ge=0, description="Stable job identity")
    title: str = Field(default="", description="Human-readable title")
    download_url: str = Field(..., alias="downloadUrl")
    s3_path: str = Field(..., alias="s3Path")
    global_episode_number: Optional[int] = Field(
        default=None, alias="globalEpisodeNumber"
    )

    @property
    def metadata(self) -> Dict[str, Any]:
        """Passthrough keys from the input document."""
        return dict(self.model_extra or {})

    def __str__(self) -> str:
        return f"Job(index={self.index}, title={self.title!r}, dest={self.s3_path})"


class JobResult(BaseModel):
    """Outcome of a successful Job Executor invocation."""

    index: int
    title: str = ""
    s3_path: str
    global_episode_number: Optional[int] = None
    worker_id: str
    processed_at: datetime = Field(default_factory=utc_now)
    skipped: bool = False  # Destination already existed; nothing uploaded
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_job(cls, job: Job, worker_id: str, **kwargs) -> "JobResult":
        return cls(
            index=job.index,
            title=job.title,
            s3_path=job.s3_path,
            global_episode_number=job.global_episode_number,
            worker_id=worker_id,
            metadata=job.metadata,
            **kwargs,
        )

    def __str__(self) -> str:
        status = "SKIPPED" if self.skipped else "UPLOADED"
        return f"JobResult({status}, index={self.index}, worker={self.worker_id})"


class JobFailure(BaseModel):
    """Terminal failure for one job. Never retried within the same run."""

    index: int
    title: str = ""
    worker_id: str
    error: str
    kind: FailureKind = FailureKind.TRANSFER
    failed_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"JobFailure({self.kind.value}, index={self.index}, error={self.error})"


class ProgressLedger(BaseModel):
    """
    Persisted aggregate progress for a run.

    Serialized with camelCase keys. ``completed_jobs`` is a copy of the
    completed set; the separate completed document is what resumption reads.
    """

    model_config = ConfigDict(populate_by_name=True)

    total_jobs: int = Field(default=0, ge=0, alias="totalJobs")
    processed_count: int = Field(default=0, ge=0, alias="processedCount")
    failed_count: int = Field(default=0, ge=0, alias="failedCount")
    active_workers: int = Field(default=0, ge=0, alias="activeWorkers")
    start_time: datetime = Field(default_factory=utc_now, alias="startTime")
    last_updated: datetime = Field(default_factory=utc_now, alias="lastUpdated")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    completed_jobs: List[int] = Field(default_factory=list, alias="completedJobs")

    @property
    def remaining(self) -> int:
        return max(0, self.total_jobs - self.processed_count)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RunSummary(BaseModel):
    """Final figures emitted when the orchestrator has drained."""

    total_jobs: int
    processed_count: int
    failed_count: int
    remaining: int
    succeeded_this_run: int = 0
    skipped_this_run: int = 0
    failed_this_run: int = 0
    elapsed_seconds: float = 0.0
    interrupted: bool = False
