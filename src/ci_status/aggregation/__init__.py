"""Aggregation of job statuses into stage and pipeline statuses."""

from src.ci_status.aggregation.latest import ignored, latest, ordered
from src.ci_status.aggregation.stages import (
    STATUS_PRECEDENCE,
    composite_status,
    stage_order,
    stages_status,
)
from src.ci_status.aggregation.view import PipelineStatusView

__all__ = [
    "PipelineStatusView",
    "STATUS_PRECEDENCE",
    "composite_status",
    "ignored",
    "latest",
    "ordered",
    "stage_order",
    "stages_status",
]
