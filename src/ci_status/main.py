"""Composition root for the job status core.

Wires configuration, logging, the job store, event emitters, the hook
dispatcher, the state machine and the pipeline status view into one
StatusService that embedding applications hold for their lifetime.

Example:
    >>> async with build_status_service(hooks=[MergeWhenPipelineSucceeds()]) as service:
    ...     job = await service.machine.create(pipeline_id=1, name="rspec")
    ...     await service.view.overall_status(1)
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from .aggregation.view import PipelineStatusView
from .clock import Clock, SystemClock
from .config import StatusSettings, get_settings
from .events.emitter import EventEmitter, create_event_emitter
from .hooks.dispatcher import HookDispatcher, TransitionHook
from .jobs.machine import JobStateMachine
from .store.memory import InMemoryJobStore
from .store.postgres import PostgresJobStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for processes that embed the status core."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: StatusSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Job status configuration:")
    if settings.database_url:
        logger.info(f"  Database URL: {_redact_secret(settings.database_url, 13)}")
        logger.info(
            f"  Pool Size: {settings.db_min_pool_size}-{settings.db_max_pool_size}"
        )
    else:
        logger.info("  Database URL: not set, using in-memory store")
    logger.info(f"  Hook Max Attempts: {settings.hook_max_attempts}")
    logger.info(f"  Hook Retry Delay Seconds: {settings.hook_retry_delay_seconds}")
    logger.info(
        f"  Event Sinks: {', '.join(sink.value for sink in settings.event_sinks)}"
    )
    logger.info(f"  Log Level: {settings.log_level}")


@dataclass
class StatusService:
    """The wired components of the job status core.

    Attributes:
        settings: Validated configuration.
        store: The job store shared by the machine and the view.
        machine: State machine for job transitions.
        view: Read-only pipeline status view.
        hooks: Dispatcher running success hooks after commit.
        event_emitter: Sink for status events.
    """

    settings: StatusSettings
    store: Union[InMemoryJobStore, PostgresJobStore]
    machine: JobStateMachine
    view: PipelineStatusView
    hooks: HookDispatcher
    event_emitter: EventEmitter

    async def start(self) -> None:
        """Open store connections, if the store needs any."""
        if isinstance(self.store, PostgresJobStore):
            await self.store.connect()
        logger.info("Job status service started")

    async def close(self) -> None:
        """Wait for outstanding hooks, then release resources."""
        logger.info("Job status service shutting down...")
        await self.hooks.close()
        await self.event_emitter.close()
        if isinstance(self.store, PostgresJobStore):
            await self.store.disconnect()
        logger.info("Job status service shutdown complete")

    async def __aenter__(self) -> "StatusService":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def build_status_service(
    settings: Optional[StatusSettings] = None,
    hooks: Optional[List[TransitionHook]] = None,
    clock: Optional[Clock] = None,
    configure_logs: bool = False,
) -> StatusService:
    """Wire all job status components from settings.

    Args:
        settings: Validated settings. Read from the environment if None.
        hooks: TransitionHooks to notify when jobs succeed.
        clock: Time source; wall-clock UTC if None.
        configure_logs: Whether to set up root logging from settings.log_level.

    Returns:
        A StatusService that still needs start() (or `async with`).
    """
    settings = settings or get_settings()
    clock = clock or SystemClock()
    if configure_logs:
        configure_logging(settings.log_level)
    _log_configuration(settings)

    store: Union[InMemoryJobStore, PostgresJobStore]
    if settings.database_url:
        store = PostgresJobStore(
            settings.database_url,
            min_pool_size=settings.db_min_pool_size,
            max_pool_size=settings.db_max_pool_size,
        )
    else:
        store = InMemoryJobStore()

    event_emitter = create_event_emitter(settings.event_sinks)
    dispatcher = HookDispatcher(
        hooks=hooks,
        max_attempts=settings.hook_max_attempts,
        retry_delay_seconds=settings.hook_retry_delay_seconds,
        event_emitter=event_emitter,
        clock=clock,
    )
    machine = JobStateMachine(
        store,
        clock=clock,
        hooks=dispatcher,
        event_emitter=event_emitter,
    )

    return StatusService(
        settings=settings,
        store=store,
        machine=machine,
        view=PipelineStatusView(store),
        hooks=dispatcher,
        event_emitter=event_emitter,
    )
