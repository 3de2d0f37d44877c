"""CI job status state machine.

This module implements the per-job status state machine in two layers:

- apply_event(): a pure function that validates an event against the
  TRANSITIONS table and returns the updated job with its timestamps set.
- JobStateMachine: applies events to job snapshots and commits them through
  a JobStore with optimistic concurrency, then emits status events and
  schedules post-commit hooks.

A transition is conditioned on the persisted status still matching the
status the caller read. If another writer got there first the write is
rejected with StaleStateError and nothing is changed; the caller re-reads
and decides whether the transition still makes sense.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from src.ci_status.clock import Clock, SystemClock
from src.ci_status.events.emitter import EventEmitter, NullEventEmitter
from src.ci_status.events.models import EventType, StatusEvent
from src.ci_status.hooks.dispatcher import HookDispatcher
from src.ci_status.jobs.models import (
    FORGIVABLE_STATUSES,
    Job,
    JobEvent,
    JobStatus,
    PipelineRef,
    TERMINAL_STATUSES,
    can_transition,
    target_status,
)


logger = logging.getLogger(__name__)

# Fields a conditional write is allowed to change
MUTABLE_FIELDS = ("status", "started_at", "finished_at", "erased_at", "erased_by_id")


class JobStatusError(Exception):
    """Base class for errors raised by the job status core."""


class JobValidationError(JobStatusError):
    """Raised when a job cannot be created because required data is missing."""


class InvalidTransitionError(JobStatusError):
    """Raised when an event is not allowed from the job's current status.

    The job is left untouched. This is an expected outcome: callers
    inspect the current status and decide what to do next.

    Attributes:
        job_id: The job the event was applied to.
        from_status: The job's current status.
        event: The rejected event.
    """

    def __init__(
        self,
        job_id: Optional[int],
        from_status: JobStatus,
        event: JobEvent,
    ):
        self.job_id = job_id
        self.from_status = from_status
        self.event = event
        super().__init__(
            f"Cannot {event.value} job {job_id} from status {from_status.value}"
        )


class StaleStateError(JobStatusError):
    """Raised when a concurrent writer changed the job first.

    Attributes:
        job_id: The job with the conflict.
        expected_status: The status the writer expected to find.
        actual_status: The status found in the store, if known.
    """

    def __init__(
        self,
        job_id: int,
        expected_status: JobStatus,
        actual_status: Optional[JobStatus] = None,
    ):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        message = f"Stale status for job {job_id}: expected {expected_status.value}"
        if actual_status is not None:
            message += f", found {actual_status.value}"
        super().__init__(message)


class NotFoundError(JobStatusError):
    """Raised when a referenced job or pipeline does not exist in the store.

    Attributes:
        job_id: The job ID that was not found, if a job was looked up.
        pipeline_id: The pipeline ID that was not found, if a pipeline was
            looked up.
    """

    def __init__(
        self,
        job_id: Optional[int] = None,
        pipeline_id: Optional[int] = None,
    ):
        self.job_id = job_id
        self.pipeline_id = pipeline_id
        if pipeline_id is not None and job_id is None:
            message = f"Pipeline not found: {pipeline_id}"
        else:
            message = f"Job not found: {job_id}"
        super().__init__(message)


@runtime_checkable
class JobStore(Protocol):
    """Protocol defining the persistence contract the state machine needs.

    The store is responsible for:
    - Assigning monotonically increasing ids on insert
    - Rejecting jobs whose pipeline does not exist
    - Returning pipeline snapshots for the read path
    - Applying conditional writes atomically per job
    """

    async def insert(self, job: Job) -> Job:
        """Insert a new job and return it with its store-assigned id.

        Raises:
            NotFoundError: If the job's pipeline does not exist.
        """
        ...

    async def get(self, job_id: int) -> Optional[Job]:
        """Get a job by id, or None if it does not exist."""
        ...

    async def list_for_pipeline(self, pipeline_id: int) -> List[Job]:
        """Return a snapshot of every job (all attempts) in a pipeline."""
        ...

    async def get_pipeline(self, pipeline_id: int) -> Optional[PipelineRef]:
        """Get a pipeline by id, or None if it does not exist."""
        ...

    async def update_with_status(
        self,
        job_id: int,
        expected_status: JobStatus,
        changes: Dict[str, Any],
    ) -> bool:
        """Apply changes only if the persisted status equals expected_status.

        Returns:
            True if the write was applied, False if the job does not exist
            or its status no longer matches.
        """
        ...


def apply_event(job: Job, event: JobEvent, now: datetime) -> Job:
    """Apply a state machine event to a job value.

    Side effects of a successful transition:
    - pending → running sets started_at
    - any → success/failed/canceled sets finished_at

    Args:
        job: The job as last read.
        event: The event to apply.
        now: Current time, used for the timestamps.

    Returns:
        A new Job with the target status. The input job is not modified.

    Raises:
        InvalidTransitionError: If the event is not allowed from job.status.

    Example:
        >>> running = apply_event(job, JobEvent.RUN, now)
        >>> running.started_at == now
        True
    """
    if not can_transition(job.status, event):
        raise InvalidTransitionError(job.id, job.status, event)

    to_status = target_status(event)
    changes: Dict[str, Any] = {"status": to_status}

    if job.status == JobStatus.PENDING and to_status == JobStatus.RUNNING:
        changes["started_at"] = now

    if to_status in TERMINAL_STATUSES:
        changes["finished_at"] = now

    return job.model_copy(update=changes)


def duration(job: Job, now: datetime) -> Optional[float]:
    """Run time of a job in seconds.

    Returns finished_at - started_at for finished jobs, now - started_at for
    jobs still running, and None for jobs that never started.
    """
    if job.started_at and job.finished_at:
        return (job.finished_at - job.started_at).total_seconds()
    if job.started_at:
        return (now - job.started_at).total_seconds()
    return None


def is_ignored(job: Job) -> bool:
    """Whether a job's outcome is excluded from aggregate status.

    A job is ignored when it is allowed to fail and it failed or was canceled.
    """
    return job.allow_failure and job.status in FORGIVABLE_STATUSES


def is_stuck(job: Job) -> bool:
    """Whether a job is stuck waiting for a runner.

    Detecting this needs runner and queue state that the status core does
    not have, so it always reports False.
    """
    return False


def _changed_fields(before: Job, after: Job) -> Dict[str, Any]:
    return {
        field: getattr(after, field)
        for field in MUTABLE_FIELDS
        if getattr(before, field) != getattr(after, field)
    }


class JobStateMachine:
    """State machine for CI job statuses, backed by a JobStore.

    The state machine enforces the following invariants:
    - Only transitions in TRANSITIONS are allowed
    - started_at is set exactly when a job starts running
    - finished_at is set exactly when a job reaches a terminal status
    - A rejected or conflicting transition leaves the stored job unchanged
    - Hooks run only after the success transition has been committed

    Attributes:
        store: The job store for persistence.
        clock: Time source for transition timestamps.
        hooks: Dispatcher for post-commit success hooks.
        event_emitter: Sink for status events.

    Example:
        >>> machine = JobStateMachine(store)
        >>> job = await machine.create(pipeline_id=1, name="rspec", stage="test")
        >>> job = await machine.run(job)
        >>> job = await machine.succeed(job)
    """

    def __init__(
        self,
        store: JobStore,
        clock: Optional[Clock] = None,
        hooks: Optional[HookDispatcher] = None,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.event_emitter = event_emitter or NullEventEmitter()
        self.hooks = hooks or HookDispatcher(
            event_emitter=self.event_emitter, clock=self.clock
        )

    async def create(
        self,
        pipeline_id: Optional[int],
        name: Optional[str],
        stage: str = "test",
        stage_index: int = 0,
        allow_failure: bool = False,
        ref: Optional[str] = None,
        author_id: Optional[int] = None,
        project_id: Optional[int] = None,
        trigger_request_id: Optional[int] = None,
        description: Optional[str] = None,
        target_url: Optional[str] = None,
    ) -> Job:
        """Create and persist a new pending job.

        Args:
            pipeline_id: Owning pipeline. Required.
            name: Logical job name. Required, non-blank.
            stage: Stage label.
            stage_index: Relative order of the stage in the pipeline.
            allow_failure: Whether failures are ignored in aggregates.

        Returns:
            The inserted job, with its store-assigned id.

        Raises:
            JobValidationError: If name or pipeline_id is missing or invalid.
                Nothing is persisted in that case.
            NotFoundError: If the pipeline does not exist.
        """
        if pipeline_id is None:
            raise JobValidationError("pipeline_id is required")
        if not name or not name.strip():
            raise JobValidationError("name cannot be empty")

        try:
            job = Job(
                pipeline_id=pipeline_id,
                name=name,
                stage=stage,
                stage_index=stage_index,
                allow_failure=allow_failure,
                status=JobStatus.PENDING,
                created_at=self.clock.now(),
                ref=ref,
                author_id=author_id,
                project_id=project_id,
                trigger_request_id=trigger_request_id,
                description=description,
                target_url=target_url,
            )
        except PydanticValidationError as e:
            raise JobValidationError(f"Invalid job: {e}") from e

        inserted = await self.store.insert(job)

        logger.info(
            "Created job",
            extra={**inserted.log_context(), "stage": inserted.stage},
        )

        return inserted

    async def transition(self, job: Job, event: JobEvent) -> Job:
        """Apply an event to a job snapshot and commit it.

        Args:
            job: The job as the caller last read it. Its status is the
                 expected pre-state of the conditional write.
            event: The event to apply.

        Returns:
            The committed job.

        Raises:
            InvalidTransitionError: If the event is not allowed from job.status.
            StaleStateError: If the stored status no longer matches job.status.
            NotFoundError: If the job is not persisted or no longer exists.
        """
        if job.id is None:
            raise NotFoundError(None)

        now = self.clock.now()

        try:
            updated = apply_event(job, event, now)
        except InvalidTransitionError:
            logger.warning(
                "Invalid job transition attempted",
                extra={**job.log_context(), "job_event": event.value},
            )
            await self._safe_emit(
                StatusEvent.for_job(
                    EventType.TRANSITION_REJECTED,
                    job,
                    timestamp=now,
                    from_status=job.status.value,
                    job_event=event.value,
                )
            )
            raise

        await self._commit(job, updated, event.value)

        logger.info(
            "Transitioned job status",
            extra={
                **updated.log_context(),
                "from_status": job.status.value,
                "job_event": event.value,
            },
        )

        details: Dict[str, Any] = {
            "from_status": job.status.value,
            "to_status": updated.status.value,
        }
        if updated.finished_at and updated.started_at:
            details["duration_seconds"] = duration(updated, now)
        await self._safe_emit(
            StatusEvent.for_job(
                EventType.STATE_TRANSITION, updated, timestamp=now, **details
            )
        )

        if updated.status == JobStatus.SUCCESS:
            self.hooks.notify_success(updated)

        return updated

    async def transition_by_id(self, job_id: int, event: JobEvent) -> Job:
        """Read the current job and apply an event to it.

        Raises:
            NotFoundError: If the job does not exist.
            InvalidTransitionError: If the event is not allowed.
            StaleStateError: If a concurrent writer won between read and write.
        """
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return await self.transition(job, event)

    async def run(self, job: Job) -> Job:
        return await self.transition(job, JobEvent.RUN)

    async def succeed(self, job: Job) -> Job:
        return await self.transition(job, JobEvent.SUCCESS)

    async def drop(self, job: Job) -> Job:
        return await self.transition(job, JobEvent.DROP)

    async def cancel(self, job: Job) -> Job:
        return await self.transition(job, JobEvent.CANCEL)

    async def erase(self, job: Job, erased_by_id: Optional[int] = None) -> Job:
        """Mark a job's trace and artifacts as erased.

        Status and timestamps are kept; only the erasure markers change.

        Raises:
            StaleStateError: If the stored status no longer matches job.status.
            NotFoundError: If the job is not persisted or no longer exists.
        """
        if job.id is None:
            raise NotFoundError(None)

        updated = job.model_copy(
            update={"erased_at": self.clock.now(), "erased_by_id": erased_by_id}
        )
        await self._commit(job, updated, "erase")

        logger.info(
            "Erased job",
            extra={**updated.log_context(), "erased_by_id": erased_by_id},
        )

        return updated

    async def get(self, job_id: int) -> Job:
        """Get a job by id.

        Raises:
            NotFoundError: If the job does not exist.
        """
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def duration(self, job: Job) -> Optional[float]:
        return duration(job, self.clock.now())

    async def _commit(self, before: Job, after: Job, action: str) -> None:
        if before.id is None:
            raise NotFoundError(None)
        committed = await self.store.update_with_status(
            before.id,
            expected_status=before.status,
            changes=_changed_fields(before, after),
        )
        if committed:
            return

        current = await self.store.get(before.id)
        if current is None:
            raise NotFoundError(before.id)

        logger.warning(
            "Concurrent update detected for job",
            extra={
                **before.log_context(),
                "expected_status": before.status.value,
                "actual_status": current.status.value,
                "job_event": action,
            },
        )
        await self._safe_emit(
            StatusEvent.for_job(
                EventType.STALE_WRITE,
                before,
                timestamp=self.clock.now(),
                expected_status=before.status.value,
                actual_status=current.status.value,
                job_event=action,
            )
        )
        raise StaleStateError(before.id, before.status, current.status)

    async def _safe_emit(self, event: StatusEvent) -> None:
        """Emit an event, swallowing exceptions so transitions are not disrupted."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit status event",
                extra={"event_type": event.event_type.value, "job_id": event.job_id},
            )
