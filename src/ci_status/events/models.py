"""Job status event models for observability.

This module defines the data models for status events, including:
- EventType: Enum of all event types emitted by the state machine
- StatusEvent: Structured event with the job identity and details

Events are emitted after transitions, rejected transitions, write
conflicts and hook failures. They feed logs and Prometheus metrics.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from src.ci_status.jobs.models import Job


class EventType(str, Enum):
    """Types of events emitted by the job state machine.

    Event Categories:
        STATE_TRANSITION: A job moved to a new status and the change was committed.
        TRANSITION_REJECTED: An event was not allowed from the job's current status.
        STALE_WRITE: A conditional write lost against a concurrent writer.
        HOOK_FAILURE: A post-commit hook failed after exhausting its attempts.
    """

    STATE_TRANSITION = "state_transition"
    TRANSITION_REJECTED = "transition_rejected"
    STALE_WRITE = "stale_write"
    HOOK_FAILURE = "hook_failure"


class StatusEvent(BaseModel):
    """Structured event describing something that happened to a job.

    Details Field Conventions:
        For STATE_TRANSITION events:
            - from_status: Previous status
            - to_status: New status
            - duration_seconds: Run time, when the job finished after running

        For TRANSITION_REJECTED events:
            - from_status: Status the event was rejected from
            - job_event: Name of the rejected event

        For STALE_WRITE events:
            - expected_status: Status the writer expected
            - job_event: Name of the event being applied

        For HOOK_FAILURE events:
            - hook: Hook class name
            - attempts: Number of attempts made
            - error_message: Last error message

    Example:
        >>> event = StatusEvent(
        ...     event_type=EventType.STATE_TRANSITION,
        ...     job_id=7,
        ...     pipeline_id=3,
        ...     job_name="rspec",
        ...     details={"from_status": "pending", "to_status": "running"},
        ... )
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    job_id: Optional[int] = Field(
        default=None,
        description="Identifier of the affected job",
    )

    pipeline_id: int = Field(
        ...,
        description="Identifier of the pipeline owning the job",
    )

    job_name: str = Field(
        ...,
        min_length=1,
        description="Logical name of the affected job",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    @classmethod
    def for_job(
        cls,
        event_type: EventType,
        job: "Job",
        timestamp: Optional[datetime] = None,
        **details: Any,
    ) -> "StatusEvent":
        """Build an event for a job, copying its identity fields."""
        return cls(
            event_type=event_type,
            job_id=job.id,
            pipeline_id=job.pipeline_id,
            job_name=job.name,
            timestamp=timestamp or datetime.now(timezone.utc),
            details=details,
        )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary suitable for structured logging.

        Example:
            >>> event.to_log_dict()["event_type"]
            'state_transition'
        """
        return {
            "event_type": self.event_type.value,
            "job_id": self.job_id,
            "pipeline_id": self.pipeline_id,
            "job_name": self.job_name,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
