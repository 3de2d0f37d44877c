"""CI job status models.

This module defines the data models for the job status state machine:
- JobStatus: Enum of the five job statuses
- JobEvent: Enum of the events that move a job between statuses
- Job: A single CI job record belonging to a pipeline
- PipelineRef: Read-only view of the owning pipeline/commit
- TRANSITIONS: Map from event to allowed source statuses and target status

The models use Pydantic for validation, consistent with the config and
event models.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Sentinel used when a pipeline has no parent commit (e.g. first push)
BLANK_SHA = "0" * 40


class JobStatus(str, Enum):
    """Statuses a CI job moves through.

    Status Flow:
        pending → running → success | failed | canceled
        pending → success | failed | canceled

    Attributes:
        PENDING: Job created and waiting for a runner.
        RUNNING: Job picked up and executing.
        SUCCESS: Job finished successfully.
        FAILED: Job finished with an error (or was dropped).
        CANCELED: Job canceled by a user or by the system.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


class JobEvent(str, Enum):
    """Events accepted by the job state machine."""

    RUN = "run"
    SUCCESS = "success"
    DROP = "drop"
    CANCEL = "cancel"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELED}
)

# Outcomes that allow_failure jobs are forgiven for
FORGIVABLE_STATUSES: FrozenSet[JobStatus] = frozenset(
    {JobStatus.FAILED, JobStatus.CANCELED}
)


# Transition table
#
# Each event maps to (allowed source statuses, target status). Terminal
# statuses never appear as a source, so a finished job cannot move again.
TRANSITIONS: Dict[JobEvent, Tuple[FrozenSet[JobStatus], JobStatus]] = {
    JobEvent.RUN: (
        frozenset({JobStatus.PENDING}),
        JobStatus.RUNNING,
    ),
    JobEvent.SUCCESS: (
        frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
        JobStatus.SUCCESS,
    ),
    JobEvent.DROP: (
        frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
        JobStatus.FAILED,
    ),
    JobEvent.CANCEL: (
        frozenset({JobStatus.PENDING, JobStatus.RUNNING}),
        JobStatus.CANCELED,
    ),
}


class Job(BaseModel):
    """A single CI job (build/commit status) record.

    Jobs are owned by a pipeline. Retried attempts of the same logical
    job share a name; the store-assigned id orders attempts by creation.

    Jobs are immutable values; the state machine produces updated copies.
    The timestamps must agree with the status: a pending job has neither,
    a running job has started_at only, and a finished job has finished_at
    (started_at too if it ran first).

    Attributes:
        id: Store-assigned identifier, monotonic by creation. None until inserted.
        pipeline_id: Identifier of the owning pipeline.
        name: Logical job name within the pipeline.
        stage: Stage label the job belongs to.
        stage_index: Relative order of the stage within the pipeline.
        status: Current status.
        allow_failure: Whether a failed/canceled outcome is ignored in aggregates.
        started_at: When the job started running.
        finished_at: When the job reached a terminal status.
        created_at: When the job record was created.
        ref: Git ref the job was built for.
        author_id: User that triggered the job.
        project_id: Project the job belongs to.
        trigger_request_id: Trigger request that created the job, if any.
        description: Free-form status description.
        target_url: Link to the job's external details.
        coverage: Reported test coverage percentage.
        erased_at: When the job's trace and artifacts were erased.
        erased_by_id: User that erased the job.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = Field(default=None, ge=1)

    pipeline_id: int = Field(
        ...,
        description="Identifier of the owning pipeline",
    )

    name: str = Field(
        ...,
        min_length=1,
        description="Logical job name; retries share a name",
    )

    stage: str = Field(default="test")

    stage_index: int = Field(default=0)

    status: JobStatus = Field(default=JobStatus.PENDING)

    allow_failure: bool = Field(default=False)

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    ref: Optional[str] = None
    author_id: Optional[int] = None
    project_id: Optional[int] = None
    trigger_request_id: Optional[int] = None

    description: Optional[str] = None
    target_url: Optional[str] = None
    coverage: Optional[float] = None

    erased_at: Optional[datetime] = None
    erased_by_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the job name is not blank."""
        if not v.strip():
            raise ValueError("name cannot be blank")
        return v

    @model_validator(mode="after")
    def validate_timestamps(self) -> "Job":
        """Validate that started_at and finished_at match the status."""
        finished = self.status in TERMINAL_STATUSES
        if finished != (self.finished_at is not None):
            raise ValueError(
                "finished_at must be set exactly when the job is finished "
                f"(status {self.status.value})"
            )
        if self.status == JobStatus.PENDING and self.started_at is not None:
            raise ValueError("a pending job cannot have started_at")
        if self.status == JobStatus.RUNNING and self.started_at is None:
            raise ValueError("a running job must have started_at")
        if self.started_at and self.finished_at and self.finished_at < self.started_at:
            raise ValueError("finished_at cannot be before started_at")
        return self

    @property
    def is_erased(self) -> bool:
        return self.erased_at is not None

    def log_context(self) -> Dict[str, object]:
        """Fields identifying this job in structured log entries."""
        return {
            "job_id": self.id,
            "pipeline_id": self.pipeline_id,
            "job_name": self.name,
            "status": self.status.value,
        }


class PipelineRef(BaseModel):
    """Read-only view of the pipeline (commit) that owns a set of jobs.

    Attributes:
        pipeline_id: Pipeline identifier.
        project_id: Project the pipeline belongs to.
        sha: Commit SHA the pipeline was built for.
        before_sha: SHA of the previous head, if known.
    """

    pipeline_id: int
    project_id: Optional[int] = None
    sha: str = Field(..., min_length=1)
    before_sha: Optional[str] = None

    @property
    def short_sha(self) -> str:
        return self.sha[:8]

    @property
    def effective_before_sha(self) -> str:
        return self.before_sha or BLANK_SHA


def is_terminal(status: JobStatus) -> bool:
    """Check if a status is terminal (success, failed or canceled).

    Example:
        >>> is_terminal(JobStatus.CANCELED)
        True
        >>> is_terminal(JobStatus.RUNNING)
        False
    """
    return status in TERMINAL_STATUSES


def can_transition(status: JobStatus, event: JobEvent) -> bool:
    """Check if an event is accepted from the given status.

    Example:
        >>> can_transition(JobStatus.PENDING, JobEvent.RUN)
        True
        >>> can_transition(JobStatus.SUCCESS, JobEvent.CANCEL)
        False
    """
    sources, _ = TRANSITIONS[event]
    return status in sources


def target_status(event: JobEvent) -> JobStatus:
    """Return the status an event moves a job to."""
    return TRANSITIONS[event][1]
