"""Latest-attempt selection for retried jobs.

Retrying a job creates a new record with the same name, so a pipeline
snapshot can hold several attempts per name. Status views only look at
the most recent attempt; older attempts stay in the store for history.
"""

from typing import Dict, Iterable, List, Tuple

from src.ci_status.jobs.machine import is_ignored
from src.ci_status.jobs.models import Job


def latest(jobs: Iterable[Job]) -> List[Job]:
    """Select the most recent attempt of each job name.

    For every (pipeline_id, name) pair the job with the highest id wins.
    Jobs without an id have not been persisted and never win over a stored one.

    Returns:
        One job per distinct name, in no particular order.

    Example:
        >>> [j.id for j in latest([deploy_5, deploy_9])]
        [9]
    """
    winners: Dict[Tuple[int, str], Job] = {}
    for job in jobs:
        key = (job.pipeline_id, job.name)
        current = winners.get(key)
        if current is None or (job.id or 0) > (current.id or 0):
            winners[key] = job
    return list(winners.values())


def ordered(jobs: Iterable[Job]) -> List[Job]:
    """Sort jobs by name, then by id."""
    return sorted(jobs, key=lambda job: (job.name, job.id or 0))


def ignored(jobs: Iterable[Job]) -> List[Job]:
    """Jobs that are allowed to fail and failed or were canceled."""
    return [job for job in jobs if is_ignored(job)]
