"""Unit tests for PipelineStatusView and the aggregation scenarios."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from src.ci_status.aggregation import PipelineStatusView, composite_status, stages_status
from src.ci_status.jobs import (
    BLANK_SHA,
    TERMINAL_STATUSES,
    Job,
    JobStatus,
    NotFoundError,
    PipelineRef,
)
from src.ci_status.store.memory import InMemoryJobStore


STAMP = datetime(2024, 4, 2, 8, 30, tzinfo=timezone.utc)


def run_async(coro):
    return asyncio.run(coro)


def _make_job(
    name: str,
    stage: str,
    stage_index: int,
    status: JobStatus,
    allow_failure: bool = False,
    job_id: Optional[int] = None,
    pipeline_id: int = 1,
) -> Job:
    return Job(
        id=job_id,
        pipeline_id=pipeline_id,
        name=name,
        stage=stage,
        stage_index=stage_index,
        status=status,
        allow_failure=allow_failure,
        started_at=STAMP if status == JobStatus.RUNNING else None,
        finished_at=STAMP if status in TERMINAL_STATUSES else None,
    )


async def _seed(store: InMemoryJobStore, *jobs: Job) -> None:
    for job in jobs:
        await store.insert(job)


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore(
        pipelines=[
            PipelineRef(pipeline_id=pipeline_id, sha=f"{pipeline_id:040x}")
            for pipeline_id in (1, 2, 99)
        ]
    )


@pytest.fixture
def view(store) -> PipelineStatusView:
    return PipelineStatusView(store)


class TestPipelineScenarios:
    def test_allowed_failure_is_ignored_but_real_failure_counts(self, store, view):
        async def test():
            await _seed(
                store,
                _make_job("build", "build", 0, JobStatus.SUCCESS),
                _make_job("test", "test", 1, JobStatus.FAILED),
                _make_job("lint", "test", 1, JobStatus.FAILED, allow_failure=True),
            )

            assert await view.stages(1) == ["build", "test"]
            assert await view.stages_status(1) == {
                "build": JobStatus.SUCCESS,
                "test": JobStatus.FAILED,
            }
            assert await view.overall_status(1) == JobStatus.FAILED

        run_async(test())

    def test_retry_supersedes_failed_attempt(self, store, view):
        async def test():
            for index in range(1, 10):
                name = "deploy" if index in (5, 9) else f"filler{index}"
                status = JobStatus.FAILED if index == 5 else JobStatus.SUCCESS
                await store.insert(
                    _make_job(name, "deploy", 2, status, pipeline_id=1 if name == "deploy" else 2)
                )

            current = await view.latest(1)
            assert [(job.id, job.status) for job in current] == [(9, JobStatus.SUCCESS)]
            assert await view.stages_status(1) == {"deploy": JobStatus.SUCCESS}
            assert await view.overall_status(1) == JobStatus.SUCCESS

        run_async(test())

    def test_running_stage_dominates_pipeline(self, store, view):
        async def test():
            await _seed(
                store,
                _make_job("compile", "build", 0, JobStatus.FAILED),
                _make_job("rspec", "test", 1, JobStatus.RUNNING),
                _make_job("deploy", "deploy", 2, JobStatus.PENDING),
            )

            assert await view.stages_status(1) == {
                "build": JobStatus.FAILED,
                "test": JobStatus.RUNNING,
                "deploy": JobStatus.PENDING,
            }
            assert await view.overall_status(1) == JobStatus.RUNNING

        run_async(test())

    def test_failed_beats_canceled_across_stages(self, store, view):
        async def test():
            await _seed(
                store,
                _make_job("compile", "build", 0, JobStatus.CANCELED),
                _make_job("rspec", "test", 1, JobStatus.FAILED),
            )
            assert await view.overall_status(1) == JobStatus.FAILED

        run_async(test())

    def test_stage_index_disagreement_resolved_by_max(self, store, view):
        async def test():
            await _seed(
                store,
                _make_job("a", "alpha", 0, JobStatus.SUCCESS),
                _make_job("b", "alpha", 5, JobStatus.SUCCESS),
                _make_job("c", "beta", 3, JobStatus.SUCCESS),
                _make_job("d", "gamma", 3, JobStatus.SUCCESS),
            )
            assert await view.stages(1) == ["beta", "gamma", "alpha"]

        run_async(test())

    def test_pipeline_without_jobs(self, view):
        async def test():
            assert await view.latest(99) == []
            assert await view.stages(99) == []
            assert await view.stages_status(99) == {}
            assert await view.overall_status(99) is None

        run_async(test())

    def test_unknown_pipeline_is_not_found(self, view):
        async def test():
            for read in (view.latest, view.stages, view.stages_status, view.overall_status):
                with pytest.raises(NotFoundError) as exc_info:
                    await read(404)
                assert exc_info.value.pipeline_id == 404

        run_async(test())

    def test_jobs_of_other_pipelines_are_not_mixed_in(self, store, view):
        async def test():
            await _seed(
                store,
                _make_job("rspec", "test", 1, JobStatus.SUCCESS, pipeline_id=1),
                _make_job("rspec", "test", 1, JobStatus.FAILED, pipeline_id=2),
            )
            assert await view.overall_status(1) == JobStatus.SUCCESS
            assert await view.overall_status(2) == JobStatus.FAILED

        run_async(test())


class TestPureAggregation:
    def test_stages_status_preserves_stage_order(self):
        jobs = [
            _make_job("deploy", "deploy", 2, JobStatus.PENDING, job_id=3),
            _make_job("build", "build", 0, JobStatus.SUCCESS, job_id=1),
            _make_job("rspec", "test", 1, JobStatus.CANCELED, job_id=2),
        ]
        assert list(stages_status(jobs)) == ["build", "test", "deploy"]

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([JobStatus.SUCCESS, JobStatus.RUNNING, JobStatus.PENDING], JobStatus.RUNNING),
            ([JobStatus.SUCCESS, JobStatus.PENDING, JobStatus.FAILED], JobStatus.PENDING),
            ([JobStatus.CANCELED, JobStatus.FAILED, JobStatus.SUCCESS], JobStatus.FAILED),
            ([JobStatus.CANCELED, JobStatus.SUCCESS], JobStatus.CANCELED),
            ([JobStatus.SUCCESS, JobStatus.SUCCESS], JobStatus.SUCCESS),
            ([], JobStatus.SUCCESS),
        ],
    )
    def test_composite_precedence(self, statuses, expected):
        assert composite_status(statuses) == expected


class TestPipelineRef:
    def test_before_sha_falls_back_to_blank_sha(self, store):
        async def test():
            await store.add_pipeline(PipelineRef(pipeline_id=1, sha="a1b2c3d4e5f6a7b8"))
            pipeline = await store.get_pipeline(1)

            assert pipeline.short_sha == "a1b2c3d4"
            assert pipeline.effective_before_sha == BLANK_SHA
            assert BLANK_SHA == "0" * 40

        run_async(test())

    def test_before_sha_is_used_when_known(self):
        pipeline = PipelineRef(pipeline_id=1, sha="ffff", before_sha="eeee")
        assert pipeline.effective_before_sha == "eeee"
