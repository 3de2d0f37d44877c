"""Pipeline-level status view.

PipelineStatusView answers "which stages does this pipeline have, in what
order, and what is each stage's status". Every call fetches one snapshot
of the pipeline's jobs from the store, keeps the latest attempt of each job
name, and aggregates in memory. No locks are taken: a snapshot may be
slightly behind concurrent writers.

Asking about a pipeline the store does not know raises NotFoundError; a
known pipeline without jobs has no stages and no overall status.
"""

import logging
from collections import OrderedDict
from typing import List, Optional

from src.ci_status.aggregation.latest import latest
from src.ci_status.aggregation.stages import (
    composite_status,
    stage_order,
    stages_status,
)
from src.ci_status.jobs.machine import JobStore, NotFoundError
from src.ci_status.jobs.models import Job, JobStatus


logger = logging.getLogger(__name__)


class PipelineStatusView:
    """Read-only status view over the jobs of a pipeline.

    Attributes:
        store: The job store to fetch pipeline snapshots from.

    Example:
        >>> view = PipelineStatusView(store)
        >>> await view.stages(pipeline_id)
        ['build', 'test']
        >>> await view.overall_status(pipeline_id)
        <JobStatus.FAILED: 'failed'>
    """

    def __init__(self, store: JobStore):
        self.store = store

    async def _current_jobs(self, pipeline_id: int) -> List[Job]:
        if await self.store.get_pipeline(pipeline_id) is None:
            raise NotFoundError(pipeline_id=pipeline_id)
        snapshot = await self.store.list_for_pipeline(pipeline_id)
        current = latest(snapshot)
        logger.debug(
            "Loaded pipeline snapshot",
            extra={
                "pipeline_id": pipeline_id,
                "job_count": len(snapshot),
                "latest_count": len(current),
            },
        )
        return current

    async def latest(self, pipeline_id: int) -> List[Job]:
        """Latest attempt of each job in the pipeline, ordered by name."""
        jobs = await self._current_jobs(pipeline_id)
        return sorted(jobs, key=lambda job: job.name)

    async def stages(self, pipeline_id: int) -> List[str]:
        """Stage names of the pipeline in execution order."""
        return stage_order(await self._current_jobs(pipeline_id))

    async def stages_status(self, pipeline_id: int) -> "OrderedDict[str, JobStatus]":
        """Composite status of each stage, in execution order."""
        return stages_status(await self._current_jobs(pipeline_id))

    async def overall_status(self, pipeline_id: int) -> Optional[JobStatus]:
        """Single status for the whole pipeline.

        Reduces the stage composites with the same precedence used within a
        stage. Returns None for a pipeline without any jobs.
        """
        statuses = await self.stages_status(pipeline_id)
        if not statuses:
            return None
        return composite_status(statuses.values())
