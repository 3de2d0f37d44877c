"""Prometheus metrics for job status observability.

Metrics Defined:
- ci_job_transitions_total: Counter of committed transitions by target status
- ci_job_transitions_rejected_total: Counter of events rejected by the state machine
- ci_job_stale_writes_total: Counter of conditional writes lost to concurrent writers
- ci_job_hook_failures_total: Counter of post-commit hook failures
- ci_job_duration_seconds: Histogram of run time of finished jobs

The MetricsEventEmitter integrates with the event emission system to
update metrics from status events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.ci_status.events.emitter import EventEmitter
from src.ci_status.events.models import EventType, StatusEvent


logger = logging.getLogger(__name__)


# Covers range from 1 second to 2 hours
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
    3600.0,
    7200.0,
)


class StatusMetrics:
    """Container for all job status Prometheus metrics.

    Supports custom registries so tests do not collide on the default one.

    Example:
        >>> metrics = StatusMetrics(CollectorRegistry())
        >>> metrics.record_transition("success")
        >>> metrics.record_duration(45.5)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.transitions_total = Counter(
            "ci_job_transitions_total",
            "Total number of committed job status transitions",
            labelnames=["to_status"],
            registry=self.registry,
        )

        self.transitions_rejected_total = Counter(
            "ci_job_transitions_rejected_total",
            "Total number of job events rejected from the current status",
            labelnames=["job_event", "from_status"],
            registry=self.registry,
        )

        self.stale_writes_total = Counter(
            "ci_job_stale_writes_total",
            "Total number of transitions lost to a concurrent writer",
            labelnames=["job_event"],
            registry=self.registry,
        )

        self.hook_failures_total = Counter(
            "ci_job_hook_failures_total",
            "Total number of post-commit hook failures",
            labelnames=["hook"],
            registry=self.registry,
        )

        self.duration_seconds = Histogram(
            "ci_job_duration_seconds",
            "Run time of finished jobs in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_transition(self, to_status: str) -> None:
        self.transitions_total.labels(to_status=to_status).inc()

    def record_rejection(self, job_event: str, from_status: str) -> None:
        self.transitions_rejected_total.labels(
            job_event=job_event,
            from_status=from_status,
        ).inc()

    def record_stale_write(self, job_event: str) -> None:
        self.stale_writes_total.labels(job_event=job_event).inc()

    def record_hook_failure(self, hook: str) -> None:
        self.hook_failures_total.labels(hook=hook).inc()

    def record_duration(self, duration_seconds: float) -> None:
        self.duration_seconds.observe(duration_seconds)


# Global metrics instance for the default registry
_default_metrics: Optional[StatusMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> StatusMetrics:
    """Get or create the status metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        StatusMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return StatusMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = StatusMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text-format output for an embedding service to expose."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: Increments transitions_total, observes duration
    - TRANSITION_REJECTED: Increments transitions_rejected_total
    - STALE_WRITE: Increments stale_writes_total
    - HOOK_FAILURE: Increments hook_failures_total
    """

    def __init__(
        self,
        metrics: Optional[StatusMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        """Initialize the metrics event emitter.

        Args:
            metrics: Optional StatusMetrics instance. If None, uses
                     the global metrics instance.
            registry: Optional Prometheus registry. Only used if metrics
                      is None.
        """
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> StatusMetrics:
        return self._metrics

    async def emit(self, event: StatusEvent) -> None:
        """Update metrics based on the status event."""
        details = event.details
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._metrics.record_transition(details.get("to_status", "unknown"))
                duration = details.get("duration_seconds")
                if duration is not None:
                    self._metrics.record_duration(float(duration))
            elif event.event_type == EventType.TRANSITION_REJECTED:
                self._metrics.record_rejection(
                    job_event=details.get("job_event", "unknown"),
                    from_status=details.get("from_status", "unknown"),
                )
            elif event.event_type == EventType.STALE_WRITE:
                self._metrics.record_stale_write(details.get("job_event", "unknown"))
            elif event.event_type == EventType.HOOK_FAILURE:
                self._metrics.record_hook_failure(details.get("hook", "unknown"))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "job_id": event.job_id,
                    "error": str(e),
                },
            )
