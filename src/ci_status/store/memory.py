"""In-memory implementation of the JobStore protocol.

Useful for tests and for embedding callers that keep job state in
process. Conditional writes are serialized with an asyncio.Lock so the
compare-and-set on a job's status is atomic with respect to other
coroutines on the same event loop.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from src.ci_status.jobs.machine import MUTABLE_FIELDS, NotFoundError
from src.ci_status.jobs.models import Job, JobStatus, PipelineRef


logger = logging.getLogger(__name__)


class InMemoryJobStore:
    """Dictionary-backed job store with monotonic ids.

    Jobs can only be inserted into pipelines the store knows about,
    registered up front or through add_pipeline().
    """

    def __init__(self, pipelines: Iterable[PipelineRef] = ()) -> None:
        self._jobs: Dict[int, Job] = {}
        self._pipelines: Dict[int, PipelineRef] = {
            pipeline.pipeline_id: pipeline for pipeline in pipelines
        }
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def insert(self, job: Job) -> Job:
        if job.pipeline_id not in self._pipelines:
            raise NotFoundError(pipeline_id=job.pipeline_id)
        async with self._lock:
            stored = job.model_copy(update={"id": self._next_id})
            self._jobs[stored.id] = stored
            self._next_id += 1
        return stored.model_copy()

    async def get(self, job_id: int) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy() if job is not None else None

    async def list_for_pipeline(self, pipeline_id: int) -> List[Job]:
        return [
            job.model_copy()
            for job_id, job in sorted(self._jobs.items())
            if job.pipeline_id == pipeline_id
        ]

    async def update_with_status(
        self,
        job_id: int,
        expected_status: JobStatus,
        changes: Dict[str, Any],
    ) -> bool:
        unknown = set(changes) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        async with self._lock:
            existing = self._jobs.get(job_id)
            if existing is None or existing.status != expected_status:
                logger.debug(
                    "Conditional update rejected",
                    extra={
                        "job_id": job_id,
                        "expected_status": expected_status.value,
                        "actual_status": existing.status.value if existing else None,
                    },
                )
                return False
            self._jobs[job_id] = existing.model_copy(update=changes)
            return True

    async def add_pipeline(self, pipeline: PipelineRef) -> None:
        self._pipelines[pipeline.pipeline_id] = pipeline

    async def get_pipeline(self, pipeline_id: int) -> Optional[PipelineRef]:
        return self._pipelines.get(pipeline_id)
