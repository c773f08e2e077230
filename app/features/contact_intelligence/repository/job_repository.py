"""
Persistence for background grouping jobs.

Writes are guarded in SQL as well as in the model: a terminal job is never
updated again and stored progress never decreases, so a late or duplicate
writer cannot roll a job backwards.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, execute_query, fetch_one
from app.features.contact_intelligence.domain.models import (
    BackgroundJob,
    JobStage,
    JobStatus,
    StageStatus,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_COLUMNS = """
    id, user_id, job_type, status, progress, stages, options, result,
    stage_errors, error, created_at, updated_at, completed_at
"""


class JobRepositoryError(DatabaseError):
    """Raised when a job row cannot be written."""


def row_to_job(row: dict[str, Any]) -> BackgroundJob:
    return BackgroundJob(
        id=row["id"],
        user_id=row["user_id"],
        job_type=row["job_type"],
        stages=[
            JobStage(
                name=stage["name"],
                status=StageStatus(stage.get("status", "pending")),
                progress=int(stage.get("progress", 0)),
            )
            for stage in row.get("stages") or []
        ],
        status=JobStatus(row["status"]),
        progress=int(row["progress"]),
        options=dict(row.get("options") or {}),
        result=row.get("result"),
        stage_errors=dict(row.get("stage_errors") or {}),
        error=row.get("error"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row.get("completed_at"),
    )


class JobRepository:
    @classmethod
    async def create(cls, job: BackgroundJob) -> BackgroundJob:
        query = f"""
            INSERT INTO contact_grouping_jobs ({JOB_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                job.id,
                job.user_id,
                job.job_type,
                job.status.value,
                job.progress,
                Jsonb([stage.to_dict() for stage in job.stages]),
                Jsonb(job.options),
                Jsonb(job.result) if job.result is not None else None,
                Jsonb(job.stage_errors),
                job.error,
                job.created_at,
                job.updated_at,
                job.completed_at,
            ),
        )
        logger.info("Background job created", job_id=job.id, job_type=job.job_type)
        return job

    @classmethod
    async def get(cls, job_id: str, user_id: str | None = None) -> BackgroundJob | None:
        if user_id is None:
            row = await fetch_one(
                f"SELECT {JOB_COLUMNS} FROM contact_grouping_jobs WHERE id = %s", (job_id,)
            )
        else:
            row = await fetch_one(
                f"SELECT {JOB_COLUMNS} FROM contact_grouping_jobs WHERE id = %s AND user_id = %s",
                (job_id, user_id),
            )
        return row_to_job(row) if row else None

    @classmethod
    async def save(cls, job: BackgroundJob) -> None:
        query = """
            UPDATE contact_grouping_jobs
            SET status = %s,
                progress = %s,
                stages = %s,
                result = %s,
                stage_errors = %s,
                error = %s,
                updated_at = %s,
                completed_at = %s
            WHERE id = %s
              AND status NOT IN ('completed', 'failed')
              AND progress <= %s
        """
        updated = await execute_query(
            query,
            (
                job.status.value,
                job.progress,
                Jsonb([stage.to_dict() for stage in job.stages]),
                Jsonb(job.result) if job.result is not None else None,
                Jsonb(job.stage_errors),
                job.error,
                job.updated_at,
                job.completed_at,
                job.id,
                job.progress,
            ),
        )
        if updated != 1:
            logger.warning(
                "Job update rejected", job_id=job.id, status=job.status.value, progress=job.progress
            )
            raise JobRepositoryError(
                f"Job {job.id} is finished or ahead of this update",
                operation="save_job",
                recoverable=False,
            )

    @classmethod
    async def claim(cls, job_id: str) -> BackgroundJob | None:
        """Atomically move a queued job to processing; None when someone else got it."""
        row = await fetch_one(
            f"""
            UPDATE contact_grouping_jobs
            SET status = 'processing', updated_at = NOW()
            WHERE id = %s AND status = 'queued'
            RETURNING {JOB_COLUMNS}
            """,
            (job_id,),
        )
        return row_to_job(row) if row else None

    @classmethod
    async def fail_stale(cls, older_than: datetime) -> int:
        """Fail processing jobs whose worker stopped updating them."""
        failed = await execute_query(
            """
            UPDATE contact_grouping_jobs
            SET status = 'failed',
                error = 'Job abandoned by worker',
                updated_at = NOW(),
                completed_at = NOW()
            WHERE status = 'processing' AND updated_at < %s
            """,
            (older_than,),
        )
        if failed:
            logger.warning("Stale grouping jobs failed", count=failed)
        return failed
