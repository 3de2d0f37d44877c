"""Post-commit hooks for successful jobs.

When a job reaches `success`, downstream automation (for example merging a
merge request once its pipeline passes) is notified through the
TransitionHook interface. Hooks run in background tasks after the status
change has been committed, so a slow or failing hook can never hold up or
roll back the transition itself.

Each hook is retried with linear back-off. A hook that still fails after
its last attempt produces a HookFailure, which is logged and emitted as a
HOOK_FAILURE event and never reaches the transition caller.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Protocol, Set, runtime_checkable

from src.ci_status.clock import Clock, SystemClock
from src.ci_status.events.emitter import EventEmitter, NullEventEmitter
from src.ci_status.events.models import EventType, StatusEvent

if TYPE_CHECKING:
    from src.ci_status.jobs.models import Job


logger = logging.getLogger(__name__)


@runtime_checkable
class TransitionHook(Protocol):
    """Callback invoked after a job has been committed as successful."""

    async def on_success(self, pipeline_id: int, job: "Job") -> None:
        """React to a job that finished successfully.

        Args:
            pipeline_id: Identifier of the pipeline owning the job.
            job: The committed job, already in `success`.
        """
        ...


class HookFailure(Exception):
    """Raised when a hook keeps failing after all of its attempts.

    Attributes:
        hook_name: Class name of the failing hook.
        job_id: The job the hook was notified about.
        attempts: Number of attempts made.
        original_error: The last underlying exception.
    """

    def __init__(
        self,
        hook_name: str,
        job_id: Optional[int],
        attempts: int,
        original_error: Optional[Exception] = None,
    ):
        self.hook_name = hook_name
        self.job_id = job_id
        self.attempts = attempts
        self.original_error = original_error
        super().__init__(
            f"Hook {hook_name} failed for job {job_id} after {attempts} attempt(s): "
            f"{original_error}"
        )


class HookDispatcher:
    """Runs TransitionHooks in the background after a successful transition.

    Attributes:
        max_attempts: Attempts per hook before giving up.
        retry_delay_seconds: Base delay between attempts; attempt N waits N times this.
        clock: Time source for HOOK_FAILURE event timestamps.

    Example:
        >>> dispatcher = HookDispatcher([MergeWhenPipelineSucceeds()])
        >>> dispatcher.notify_success(job)  # returns immediately
        >>> await dispatcher.drain()         # wait for outstanding hooks
    """

    def __init__(
        self,
        hooks: Optional[List[TransitionHook]] = None,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        event_emitter: Optional[EventEmitter] = None,
        clock: Optional[Clock] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds cannot be negative")

        self._hooks: List[TransitionHook] = list(hooks or [])
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._event_emitter = event_emitter or NullEventEmitter()
        self.clock = clock or SystemClock()
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of notifications still being processed."""
        return len(self._tasks)

    def notify_success(self, job: "Job") -> None:
        """Schedule all hooks for a job that was committed as successful.

        Must be called from within a running event loop. Returns without
        waiting for the hooks.
        """
        if self._closed:
            logger.warning(
                "Hook dispatcher closed, dropping success notification",
                extra=job.log_context(),
            )
            return
        if not self._hooks:
            return

        task = asyncio.get_running_loop().create_task(self._dispatch(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every scheduled notification has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting notifications and wait for outstanding ones."""
        self._closed = True
        await self.drain()

    async def _dispatch(self, job: "Job") -> None:
        for hook in self._hooks:
            try:
                await self._run_with_retry(hook, job)
            except HookFailure as failure:
                logger.error(
                    "Transition hook failed",
                    extra={
                        **job.log_context(),
                        "hook": failure.hook_name,
                        "attempts": failure.attempts,
                        "error": str(failure.original_error),
                    },
                )
                await self._safe_emit(
                    StatusEvent.for_job(
                        EventType.HOOK_FAILURE,
                        job,
                        timestamp=self.clock.now(),
                        hook=failure.hook_name,
                        attempts=failure.attempts,
                        error_message=str(failure.original_error),
                    )
                )

    async def _run_with_retry(self, hook: TransitionHook, job: "Job") -> None:
        hook_name = type(hook).__name__
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                await hook.on_success(job.pipeline_id, job)
                logger.debug(
                    "Transition hook completed",
                    extra={**job.log_context(), "hook": hook_name, "attempt": attempt},
                )
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    "Transition hook attempt failed",
                    extra={
                        **job.log_context(),
                        "hook": hook_name,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error": str(e),
                    },
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_seconds * attempt)

        raise HookFailure(hook_name, job.id, self.max_attempts, last_error) from last_error

    async def _safe_emit(self, event: StatusEvent) -> None:
        try:
            await self._event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit status event",
                extra={"event_type": event.event_type.value, "job_id": event.job_id},
            )
