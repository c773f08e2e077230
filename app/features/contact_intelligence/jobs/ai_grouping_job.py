"""
AI grouping job orchestrator.

A job moves queued -> processing -> completed | failed through four stages:

    Fetching Contacts (5) -> AI Analysis (15) -> Deduplicating Groups (85)
    -> Saving Results (95) -> completed (100)

Each checkpoint is persisted before the next stage starts, so a polling
client never sees a later stage running while an earlier one looks pending.

The AI stage is the only guarded one: a timeout or any error there is
recorded in `stage_errors["ai_enhancement"]` and the job continues with
whatever groups were produced. Any other exception fails the job.
"""

import asyncio
from typing import Any

from app.features.contact_intelligence.domain.errors import FatalJobError
from app.features.contact_intelligence.domain.models import (
    BackgroundJob,
    Contact,
    Group,
    GroupSaveResult,
)
from app.features.contact_intelligence.domain.options import (
    GroupingJobOptions,
    RulesGroupingOptions,
)
from app.features.contact_intelligence.domain.subscriptions import SubscriptionTier
from app.features.contact_intelligence.repository import (
    ContactRepository,
    GroupRepository,
    JobRepository,
)
from app.features.contact_intelligence.services.budget_gate import budget_gate
from app.features.contact_intelligence.services.grouping_enhancer import grouping_enhancer
from app.features.contact_intelligence.services.rules_grouping import build_rule_groups
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JOB_TYPE = "ai_group_generation"

STAGE_FETCH = "Fetching Contacts"
STAGE_AI = "AI Analysis"
STAGE_DEDUP = "Deduplicating Groups"
STAGE_SAVE = "Saving Results"
STAGES = [STAGE_FETCH, STAGE_AI, STAGE_DEDUP, STAGE_SAVE]

PROGRESS_FETCH = 5
PROGRESS_AI = 15
PROGRESS_DEDUP = 85
PROGRESS_SAVE = 95

AI_STAGE_ERROR_KEY = "ai_enhancement"
NOT_ENOUGH_CONTACTS = "Not enough contacts to process."

# AI calls that outlived their timeout; held so they are not garbage collected mid-flight
_late_tasks: set[asyncio.Task] = set()


def dedupe_groups_by_name(groups: list[Group]) -> list[Group]:
    """
    One group per case-insensitive trimmed name; a later group replaces an
    earlier one with the same name but keeps the earlier one's position.
    """
    by_name: dict[str, Group] = {}
    for group in groups:
        key = group.normalized_name
        if key:
            by_name[key] = group
    return list(by_name.values())


def _discard_late_result(task: asyncio.Task) -> None:
    _late_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.info("Late AI enhancement ended with error", error=str(error))
    else:
        logger.info("Late AI enhancement finished after timeout, result discarded")


class AIGroupingJobRunner:
    def __init__(
        self,
        job_repository=JobRepository,
        contact_repository=ContactRepository,
        group_repository=GroupRepository,
        enhancer=None,
        gate=None,
    ):
        self.job_repository = job_repository
        self.contact_repository = contact_repository
        self.group_repository = group_repository
        self.enhancer = enhancer or grouping_enhancer
        self.gate = gate or budget_gate

    async def create_job(self, user_id: str, options: GroupingJobOptions) -> BackgroundJob:
        job = BackgroundJob.create(user_id, JOB_TYPE, STAGES, options.to_dict())
        await self.job_repository.create(job)
        return job

    async def run(self, job_id: str) -> BackgroundJob | None:
        """Claim a queued job and process it. Returns None if another runner owns it."""
        job = await self.job_repository.claim(job_id)
        if job is None:
            existing = await self.job_repository.get(job_id)
            if existing is None:
                raise FatalJobError(f"Job {job_id} does not exist", job_id=job_id)
            logger.info("Job already claimed, skipping", job_id=job_id, status=existing.status.value)
            return None
        return await self.process(job)

    async def process(self, job: BackgroundJob) -> BackgroundJob:
        options = GroupingJobOptions.from_dict(job.options)
        log = logger.bind(job_id=job.id, user_id=job.user_id)

        try:
            job.start_stage(STAGE_FETCH, PROGRESS_FETCH)
            await self.job_repository.save(job)

            contacts = await self.contact_repository.list_contacts(job.user_id)
            job.complete_stage(STAGE_FETCH)

            if len(contacts) < options.min_contacts:
                log.info("Too few contacts for AI grouping", contacts=len(contacts))
                job.complete(
                    {
                        "groups": [],
                        "totalGenerated": 0,
                        "totalUnique": 0,
                        "totalSaved": 0,
                        "message": NOT_ENOUGH_CONTACTS,
                    }
                )
                await self.job_repository.save(job)
                return job

            job.start_stage(STAGE_AI, PROGRESS_AI)
            await self.job_repository.save(job)

            tier = await self.gate.get_tier(job.user_id)
            candidates = await self._run_ai_stage(job, contacts, tier, options)
            if not candidates and options.fallback_to_rules:
                candidates = build_rule_groups(
                    contacts, RulesGroupingOptions(save=False, max_groups=options.max_groups)
                )
                log.info("AI produced no groups, using rules-based groups", groups=len(candidates))

            job.complete_stage(STAGE_AI)
            job.start_stage(STAGE_DEDUP, PROGRESS_DEDUP)
            await self.job_repository.save(job)

            unique = dedupe_groups_by_name(candidates)
            final_groups = unique[: options.max_groups]

            job.complete_stage(STAGE_DEDUP)
            job.start_stage(STAGE_SAVE, PROGRESS_SAVE)
            await self.job_repository.save(job)

            if final_groups:
                saved = await self.group_repository.save_generated_groups(job.user_id, final_groups)
            else:
                saved = GroupSaveResult(saved_count=0, duplicates_skipped=0, saved_groups=[])

            job.complete_stage(STAGE_SAVE)
            job.complete(
                {
                    "groups": [group.to_dict() for group in final_groups],
                    "totalGenerated": len(candidates),
                    "totalUnique": len(unique),
                    "totalSaved": saved.saved_count,
                }
            )
            await self.job_repository.save(job)

            log.info(
                "AI grouping job completed",
                generated=len(candidates),
                unique=len(unique),
                saved=saved.saved_count,
                stage_errors=list(job.stage_errors),
            )
            return job

        except Exception as e:
            await self._fail(job, e)
            return job

    async def _run_ai_stage(
        self,
        job: BackgroundJob,
        contacts: list[Contact],
        tier: SubscriptionTier,
        options: GroupingJobOptions,
    ) -> list[Group]:
        produced: list[Group] = []
        task = asyncio.create_task(self.enhancer.enhance(job.user_id, contacts, tier, produced))
        done, _ = await asyncio.wait({task}, timeout=options.ai_timeout_seconds)

        if not done:
            _late_tasks.add(task)
            task.add_done_callback(_discard_late_result)
            message = f"AI enhancement timed out after {options.ai_timeout_seconds:g}s"
            logger.warning(message, job_id=job.id, groups_so_far=len(produced))
            job.record_stage_error(AI_STAGE_ERROR_KEY, message)
            # Snapshot: the late task may keep appending
            return list(produced)

        try:
            outcome = task.result()
        except Exception as e:
            logger.warning(
                "AI enhancement failed, continuing with partial groups",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
                groups_so_far=len(produced),
            )
            job.record_stage_error(AI_STAGE_ERROR_KEY, str(e) or type(e).__name__)
            return list(produced)

        if outcome.feature_errors:
            job.record_stage_error(
                AI_STAGE_ERROR_KEY,
                "; ".join(f"{name}: {error}" for name, error in outcome.feature_errors.items()),
            )
        return list(produced)

    async def _fail(self, job: BackgroundJob, error: Exception) -> None:
        fatal = error if isinstance(error, FatalJobError) else FatalJobError(str(error), job.id)
        logger.error(
            "AI grouping job failed",
            job_id=job.id,
            user_id=job.user_id,
            error=fatal.message,
            error_type=type(error).__name__,
        )
        if job.status.terminal:
            # Finished in memory but the final write failed; the stale sweep will close it
            return

        job.fail(fatal.message or type(error).__name__)
        try:
            await self.job_repository.save(job)
        except Exception as save_error:
            logger.error("Could not persist job failure", job_id=job.id, error=str(save_error))


ai_grouping_job_runner = AIGroupingJobRunner()


def job_status_payload(job: BackgroundJob) -> dict[str, Any]:
    """Polling view of a job."""
    data = job.to_dict()
    data.pop("user_id", None)
    return data
