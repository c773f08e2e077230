"""
Job runners for the contact intelligence feature.
"""

from .ai_grouping_job import (
    JOB_TYPE,
    STAGES,
    AIGroupingJobRunner,
    ai_grouping_job_runner,
    dedupe_groups_by_name,
    job_status_payload,
)
from .queue import JobQueue, job_queue, run_ai_grouping_worker

__all__ = [
    "JOB_TYPE",
    "STAGES",
    "AIGroupingJobRunner",
    "ai_grouping_job_runner",
    "dedupe_groups_by_name",
    "job_status_payload",
    "JobQueue",
    "job_queue",
    "run_ai_grouping_worker",
]
