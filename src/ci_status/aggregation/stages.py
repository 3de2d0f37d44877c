"""Stage ordering and composite stage status.

Jobs in a pipeline are grouped by their stage label. Stages are ordered by
their index and each stage is reduced to one composite status.

Stage ordering rules:
- A stage's sort key is the largest stage_index seen among its jobs, so
  rows that disagree on the index resolve the same way every time
- Stages with equal keys are ordered by name

Composite status precedence, highest first:
    running > pending > failed > canceled > success

Ignored jobs (allowed to fail, and failed or canceled) do not take part in
the reduction. A stage made only of ignored jobs is successful.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List

from src.ci_status.jobs.machine import is_ignored
from src.ci_status.jobs.models import Job, JobStatus


# Lower rank wins the reduction
STATUS_PRECEDENCE: Dict[JobStatus, int] = {
    JobStatus.RUNNING: 0,
    JobStatus.PENDING: 1,
    JobStatus.FAILED: 2,
    JobStatus.CANCELED: 3,
    JobStatus.SUCCESS: 4,
}


def composite_status(statuses: Iterable[JobStatus]) -> JobStatus:
    """Reduce a collection of statuses to one using the precedence order.

    An empty collection reduces to success.

    Example:
        >>> composite_status([JobStatus.SUCCESS, JobStatus.FAILED])
        <JobStatus.FAILED: 'failed'>
        >>> composite_status([JobStatus.FAILED, JobStatus.PENDING])
        <JobStatus.PENDING: 'pending'>
    """
    return min(statuses, key=STATUS_PRECEDENCE.__getitem__, default=JobStatus.SUCCESS)


def _group_by_stage(jobs: Iterable[Job]) -> Dict[str, List[Job]]:
    groups: Dict[str, List[Job]] = {}
    for job in jobs:
        groups.setdefault(job.stage, []).append(job)
    return groups


def stage_order(jobs: Iterable[Job]) -> List[str]:
    """Return the distinct stage names of the jobs in pipeline order.

    Example:
        >>> stage_order([test_job, build_job])
        ['build', 'test']
    """
    groups = _group_by_stage(jobs)
    keys = {
        stage: max(job.stage_index for job in members)
        for stage, members in groups.items()
    }
    return sorted(keys, key=lambda stage: (keys[stage], stage))


def stages_status(jobs: Iterable[Job]) -> "OrderedDict[str, JobStatus]":
    """Map each stage, in pipeline order, to its composite status.

    Callers that want the current view should pass the output of
    latest() so that superseded retries do not count.
    """
    jobs = list(jobs)
    groups = _group_by_stage(jobs)

    result: "OrderedDict[str, JobStatus]" = OrderedDict()
    for stage in stage_order(jobs):
        result[stage] = composite_status(
            job.status for job in groups[stage] if not is_ignored(job)
        )
    return result
