"""CI job status state machine and models.

Jobs move through:
- pending → running → success | failed | canceled
- pending → success | failed | canceled

Transitions are committed through a JobStore with optimistic concurrency
on the job's status.
"""

from src.ci_status.jobs.models import (
    BLANK_SHA,
    TERMINAL_STATUSES,
    TRANSITIONS,
    Job,
    JobEvent,
    JobStatus,
    PipelineRef,
    can_transition,
    is_terminal,
    target_status,
)
from src.ci_status.jobs.machine import (
    InvalidTransitionError,
    JobStateMachine,
    JobStatusError,
    JobStore,
    JobValidationError,
    NotFoundError,
    StaleStateError,
    apply_event,
    duration,
    is_ignored,
    is_stuck,
)

__all__ = [
    # Models
    "BLANK_SHA",
    "Job",
    "JobEvent",
    "JobStatus",
    "PipelineRef",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "can_transition",
    "is_terminal",
    "target_status",
    # State machine
    "InvalidTransitionError",
    "JobStateMachine",
    "JobStatusError",
    "JobStore",
    "JobValidationError",
    "NotFoundError",
    "StaleStateError",
    "apply_event",
    "duration",
    "is_ignored",
    "is_stuck",
]
