"""PostgreSQL job store.

This module implements the JobStore protocol using asyncpg for async
PostgreSQL access. It provides:
- Connection pooling for production use
- Server-assigned monotonic job ids (BIGSERIAL)
- Conditional status writes for optimistic concurrency
- Touching the owning pipeline's updated_at on every job write

The schema lives in migrations/001_ci_jobs.sql.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import asyncpg

from src.ci_status.jobs.machine import MUTABLE_FIELDS, NotFoundError
from src.ci_status.jobs.models import Job, JobStatus, PipelineRef


logger = logging.getLogger(__name__)


JOB_COLUMNS = (
    "id",
    "pipeline_id",
    "name",
    "stage",
    "stage_index",
    "status",
    "allow_failure",
    "started_at",
    "finished_at",
    "created_at",
    "ref",
    "author_id",
    "project_id",
    "trigger_request_id",
    "description",
    "target_url",
    "coverage",
    "erased_at",
    "erased_by_id",
)

_SELECT_JOB = f"SELECT {', '.join(JOB_COLUMNS)} FROM ci_jobs"

_TOUCH_PIPELINE = "UPDATE ci_pipelines SET updated_at = now() WHERE id = $1"


class DatabaseError(Exception):
    """Raised when a database operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_job(row: Mapping[str, Any]) -> Job:
    return Job(
        id=row["id"],
        pipeline_id=row["pipeline_id"],
        name=row["name"],
        stage=row["stage"],
        stage_index=row["stage_index"],
        status=JobStatus(row["status"]),
        allow_failure=row["allow_failure"],
        started_at=_as_utc(row["started_at"]),
        finished_at=_as_utc(row["finished_at"]),
        created_at=_as_utc(row["created_at"]),
        ref=row["ref"],
        author_id=row["author_id"],
        project_id=row["project_id"],
        trigger_request_id=row["trigger_request_id"],
        description=row["description"],
        target_url=row["target_url"],
        coverage=row["coverage"],
        erased_at=_as_utc(row["erased_at"]),
        erased_by_id=row["erased_by_id"],
    )


class PostgresJobStore:
    """PostgreSQL implementation of the JobStore protocol.

    Attributes:
        connection_string: PostgreSQL connection URL.
        min_pool_size: Minimum connections in pool.
        max_pool_size: Maximum connections in pool.

    Example:
        >>> async with PostgresJobStore("postgresql://...") as store:
        ...     jobs = await store.list_for_pipeline(42)
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool, raising if not connected.

        Raises:
            DatabaseError: If the pool is not initialized.
        """
        if self._pool is None:
            raise DatabaseError(
                "Database pool not initialized. Call connect() first."
            )
        return self._pool

    async def connect(self) -> None:
        """Initialize the connection pool.

        Raises:
            DatabaseError: If connection fails.
        """
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            logger.info(
                "Connecting to PostgreSQL",
                extra={
                    "min_pool_size": self.min_pool_size,
                    "max_pool_size": self.max_pool_size,
                },
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            logger.info("PostgreSQL connection pool established")
        except Exception as e:
            logger.error(
                "Failed to connect to PostgreSQL",
                extra={"error": str(e)},
            )
            raise DatabaseError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")

    async def __aenter__(self) -> "PostgresJobStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def insert(self, job: Job) -> Job:
        """Insert a new job; the database assigns its id.

        Raises:
            NotFoundError: If the owning pipeline does not exist.
            DatabaseError: If the insert fails for other reasons.
        """
        columns = JOB_COLUMNS[1:]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        values = [
            job.status.value if column == "status" else getattr(job, column)
            for column in columns
        ]

        try:
            async with self._transaction() as conn:
                job_id = await conn.fetchval(
                    f"INSERT INTO ci_jobs ({', '.join(columns)}) "
                    f"VALUES ({placeholders}) RETURNING id",
                    *values,
                )
                await conn.execute(_TOUCH_PIPELINE, job.pipeline_id)
        except asyncpg.ForeignKeyViolationError as e:
            logger.warning(
                "Job references unknown pipeline",
                extra={"pipeline_id": job.pipeline_id, "job_name": job.name},
            )
            raise NotFoundError(pipeline_id=job.pipeline_id) from e
        except Exception as e:
            logger.error(
                "Failed to insert job",
                extra={"pipeline_id": job.pipeline_id, "job_name": job.name, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to insert job: {e}",
                original_error=e,
            ) from e

        return job.model_copy(update={"id": job_id})

    async def get(self, job_id: int) -> Optional[Job]:
        """Get a job by id.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"{_SELECT_JOB} WHERE id = $1", job_id)
        except Exception as e:
            logger.error(
                "Failed to get job",
                extra={"job_id": job_id, "error": str(e)},
            )
            raise DatabaseError(f"Failed to get job: {e}", original_error=e) from e

        return _row_to_job(row) if row is not None else None

    async def list_for_pipeline(self, pipeline_id: int) -> List[Job]:
        """Fetch every job (all attempts) of a pipeline, ordered by id.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"{_SELECT_JOB} WHERE pipeline_id = $1 ORDER BY id ASC",
                    pipeline_id,
                )
        except Exception as e:
            logger.error(
                "Failed to list pipeline jobs",
                extra={"pipeline_id": pipeline_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to list pipeline jobs: {e}",
                original_error=e,
            ) from e

        logger.debug(
            "Listed pipeline jobs",
            extra={"pipeline_id": pipeline_id, "count": len(rows)},
        )
        return [_row_to_job(row) for row in rows]

    async def update_with_status(
        self,
        job_id: int,
        expected_status: JobStatus,
        changes: Dict[str, Any],
    ) -> bool:
        """Apply changes only if the stored status equals expected_status.

        A committed write also touches the owning pipeline's updated_at in
        the same transaction.

        Returns:
            True if the row was updated, False on a status mismatch or
            missing job.

        Raises:
            ValueError: If changes is empty or names a non-writable field.
            DatabaseError: If the update fails for other reasons.
        """
        if not changes:
            raise ValueError("changes cannot be empty")
        unknown = set(changes) - set(MUTABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        columns = list(changes)
        assignments = ", ".join(
            f"{column} = ${index}" for index, column in enumerate(columns, start=3)
        )
        values = [
            value.value if isinstance(value, JobStatus) else value
            for value in changes.values()
        ]

        try:
            async with self._transaction() as conn:
                pipeline_id = await conn.fetchval(
                    f"UPDATE ci_jobs SET {assignments} "
                    f"WHERE id = $1 AND status = $2 RETURNING pipeline_id",
                    job_id,
                    expected_status.value,
                    *values,
                )

                if pipeline_id is None:
                    logger.warning(
                        "Status conflict during job update",
                        extra={
                            "job_id": job_id,
                            "expected_status": expected_status.value,
                        },
                    )
                    return False

                await conn.execute(_TOUCH_PIPELINE, pipeline_id)

        except Exception as e:
            logger.error(
                "Failed to update job",
                extra={"job_id": job_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to update job: {e}",
                original_error=e,
            ) from e

        logger.info(
            "Updated job",
            extra={"job_id": job_id, "fields": columns},
        )
        return True

    async def get_pipeline(self, pipeline_id: int) -> Optional[PipelineRef]:
        """Read the pipeline (commit) identity fields.

        Raises:
            DatabaseError: If the query fails.
        """
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT id, project_id, sha, before_sha FROM ci_pipelines WHERE id = $1",
                    pipeline_id,
                )
        except Exception as e:
            logger.error(
                "Failed to get pipeline",
                extra={"pipeline_id": pipeline_id, "error": str(e)},
            )
            raise DatabaseError(f"Failed to get pipeline: {e}", original_error=e) from e

        if row is None:
            return None
        return PipelineRef(
            pipeline_id=row["id"],
            project_id=row["project_id"],
            sha=row["sha"],
            before_sha=row["before_sha"],
        )
