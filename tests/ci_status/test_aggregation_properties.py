"""Property-based tests for stage ordering, composite status and latest selection.

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from hypothesis import given, settings, strategies as st

from src.ci_status.aggregation import (
    STATUS_PRECEDENCE,
    composite_status,
    ignored,
    latest,
    ordered,
    stage_order,
    stages_status,
)
from src.ci_status.jobs import TERMINAL_STATUSES, Job, JobStatus, is_ignored


STAMP = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def timestamps_for(status: JobStatus) -> Dict[str, Any]:
    """started_at and finished_at consistent with a status."""
    return {
        "started_at": STAMP if status == JobStatus.RUNNING else None,
        "finished_at": STAMP if status in TERMINAL_STATUSES else None,
    }


# =============================================================================
# Hypothesis Strategies for Generating Test Data
# =============================================================================


job_statuses = st.sampled_from(list(JobStatus))
stage_names = st.sampled_from(["build", "test", "review", "deploy", "cleanup"])
job_names = st.sampled_from(["compile", "rspec", "lint", "docker", "staging", "prod"])


@st.composite
def pipeline_jobs(draw: st.DrawFn, pipeline_id: int = 1) -> List[Job]:
    """Generate jobs for one pipeline with unique, increasing ids."""
    count = draw(st.integers(min_value=1, max_value=25))
    jobs = []
    for index in range(count):
        status = draw(job_statuses)
        jobs.append(
            Job(
                id=index + 1,
                pipeline_id=pipeline_id,
                name=draw(job_names),
                stage=draw(stage_names),
                stage_index=draw(st.integers(min_value=0, max_value=4)),
                status=status,
                allow_failure=draw(st.booleans()),
                **timestamps_for(status),
            )
        )
    return jobs


# =============================================================================
# Property Tests
# =============================================================================


class TestStageOrdering:
    @given(jobs=pipeline_jobs(), data=st.data())
    @settings(max_examples=100)
    def test_order_is_independent_of_row_order(self, jobs: List[Job], data) -> None:
        """Shuffling the input rows never changes the stage order."""
        shuffled = data.draw(st.permutations(jobs))
        assert stage_order(shuffled) == stage_order(jobs)
        assert list(stages_status(shuffled).items()) == list(stages_status(jobs).items())

    @given(jobs=pipeline_jobs())
    @settings(max_examples=100)
    def test_order_follows_max_index_then_name(self, jobs: List[Job]) -> None:
        """Stages sort by their largest stage_index, ties broken by name."""
        order = stage_order(jobs)

        assert sorted(order) == sorted({job.stage for job in jobs})
        keys = [
            (max(j.stage_index for j in jobs if j.stage == stage), stage)
            for stage in order
        ]
        assert keys == sorted(keys)


class TestCompositeStatus:
    @given(statuses=st.lists(job_statuses, max_size=20))
    @settings(max_examples=100)
    def test_highest_precedence_wins(self, statuses: List[JobStatus]) -> None:
        """The composite is the member with the highest precedence."""
        result = composite_status(statuses)

        if not statuses:
            assert result == JobStatus.SUCCESS
        else:
            assert result in statuses
            assert all(
                STATUS_PRECEDENCE[result] <= STATUS_PRECEDENCE[s] for s in statuses
            )

    @given(
        count=st.integers(min_value=1, max_value=10),
        statuses=st.lists(
            st.sampled_from([JobStatus.FAILED, JobStatus.CANCELED]), min_size=10, max_size=10
        ),
    )
    @settings(max_examples=100)
    def test_stage_of_only_ignored_jobs_is_success(
        self, count: int, statuses: List[JobStatus]
    ) -> None:
        """Jobs allowed to fail cannot drag a stage down on their own."""
        jobs = [
            Job(id=i + 1, pipeline_id=1, name=f"job{i}", stage="test",
                status=statuses[i], allow_failure=True, finished_at=STAMP)
            for i in range(count)
        ]
        assert stages_status(jobs) == {"test": JobStatus.SUCCESS}

    @given(jobs=pipeline_jobs())
    @settings(max_examples=100)
    def test_ignored_jobs_do_not_affect_stage(self, jobs: List[Job]) -> None:
        """Dropping ignored jobs from the input leaves every stage status unchanged."""
        kept = [job for job in jobs if not is_ignored(job)]
        full = stages_status(jobs)
        for stage, status in stages_status(kept).items():
            assert full[stage] == status
        for stage in set(full) - {job.stage for job in kept}:
            assert full[stage] == JobStatus.SUCCESS


class TestLatestSelection:
    @given(jobs=pipeline_jobs(), data=st.data())
    @settings(max_examples=100)
    def test_one_job_per_name_with_max_id(self, jobs: List[Job], data) -> None:
        """latest() keeps exactly the highest id of each name, in any row order."""
        shuffled = data.draw(st.permutations(jobs))
        selected = latest(shuffled)

        assert sorted(job.name for job in selected) == sorted({job.name for job in jobs})
        for job in selected:
            assert job.id == max(j.id for j in jobs if j.name == job.name)

    @given(jobs=pipeline_jobs())
    @settings(max_examples=100)
    def test_ordered_and_ignored_helpers(self, jobs: List[Job]) -> None:
        names = [(job.name, job.id) for job in ordered(jobs)]
        assert names == sorted(names)
        assert all(is_ignored(job) for job in ignored(jobs))
        assert len(ignored(jobs)) == sum(1 for job in jobs if is_ignored(job))
