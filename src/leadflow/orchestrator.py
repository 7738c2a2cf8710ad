"""Automation task orchestration.

This module drives an automation task from ``pending`` to a terminal
status:

1. Idempotency check and claim against the stored task status
2. Lead resolution (single id first, then the batch, in order)
3. Stage selection from the task type
4. Batch execution with bounded concurrency and live progress
5. Aggregation into the final status and counters

Enrichment and the full pipeline fan out over a bounded worker pool, since
scraping dominates their latency. Briefing and email generation run
through the leads one at a time. Per-lead failures never abort a batch;
a task only fails when it has no leads or every lead failed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from .config import ConfigError, config
from .context import StageContext
from .integrations.briefing import BriefingGenerator
from .integrations.email_writer import EmailGenerator
from .integrations.extractor import DataExtractor
from .integrations.firecrawl import FirecrawlClient
from .integrations.llm import LLMClient
from .integrations.usage import UsageTracker
from .models import AutomationTask, Lead, TaskPriority, TaskStatus, TaskType, utcnow
from .stages import EnrichmentResult, StageExecutors
from .store import LeadStore

logger = logging.getLogger(__name__)

PerLeadFn = Callable[[str, StageContext], Awaitable[EnrichmentResult]]
ProgressCallback = Callable[[int, int, int, int], None]

NO_LEADS_ERROR = "no leads to process"


@dataclass
class TaskResult:
    """Outcome of dispatching one task.

    Attributes:
        task_id: The dispatched task.
        task_type: Task type as received.
        status: Terminal status written to the store.
        total: Leads resolved at dispatch time.
        succeeded: Leads that succeeded.
        failed: Leads that failed.
        error: Task-level error message, if any.
        results: Per-lead results in input order.
        duration_seconds: Wall-clock processing time.
    """

    task_id: str
    task_type: str
    status: TaskStatus
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    error: Optional[str] = None
    results: list[EnrichmentResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "status": self.status.value,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "error": self.error,
            "results": [r.to_dict() for r in self.results],
            "duration_seconds": self.duration_seconds,
        }


class _BatchProgress:
    """Index-addressed results plus counters, updated under one lock."""

    def __init__(self, total: int) -> None:
        self.total = total
        self.results: list[Optional[EnrichmentResult]] = [None] * total
        self.processed = 0
        self.succeeded = 0
        self.failed = 0
        self.lock = asyncio.Lock()

    def record(self, index: int, result: EnrichmentResult) -> None:
        """Store a result and recompute the counters. Call with the lock held."""
        self.results[index] = result
        self.processed += 1
        done = [r for r in self.results if r is not None]
        self.succeeded = sum(1 for r in done if r.success)
        self.failed = len(done) - self.succeeded


class BatchRunner:
    """Runs a per-lead function across a batch and reports progress.

    Concurrency is bounded by a counting semaphore; every launched unit runs
    to completion and results come back in input order. After each lead the
    counters are recomputed and written to the task record under a single
    lock, so stored progress only moves forward.

    Args:
        store: Store used to persist progress.
        max_concurrency: Semaphore capacity. Defaults to MAX_CONCURRENT_LEADS.
        progress_callback: Optional callback(processed, total, succeeded, failed).
    """

    def __init__(
        self,
        store: LeadStore,
        max_concurrency: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.store = store
        self.max_concurrency = max_concurrency or config.MAX_CONCURRENT_LEADS
        self._progress_callback = progress_callback

    def _report_progress(self, progress: _BatchProgress) -> None:
        """Report progress to the callback if set."""
        if self._progress_callback:
            try:
                self._progress_callback(
                    progress.processed, progress.total, progress.succeeded, progress.failed
                )
            except Exception as e:
                logger.warning("Progress callback error: %s", e)

    async def _run_one(
        self,
        lead_id: str,
        context: StageContext,
        per_lead: PerLeadFn,
    ) -> EnrichmentResult:
        try:
            return await per_lead(lead_id, context)
        except Exception as e:
            logger.exception("Unexpected error processing lead %s", lead_id)
            return EnrichmentResult(lead_id=lead_id, error=f"unexpected error: {e}")

    async def _complete(
        self,
        progress: _BatchProgress,
        index: int,
        result: EnrichmentResult,
        context: StageContext,
    ) -> None:
        async with progress.lock:
            progress.record(index, result)
            if context.task_id:
                try:
                    await self.store.update_task_status(
                        context.task_id,
                        TaskStatus.PROCESSING,
                        progress.total,
                        progress.succeeded,
                        progress.failed,
                    )
                except Exception as e:
                    logger.warning(
                        "Failed to persist progress for task %s: %s", context.task_id, e
                    )
            self._report_progress(progress)

            logger.info(
                "Lead %d/%d processed (%s)",
                progress.processed,
                progress.total,
                "ok" if result.success else result.error,
                extra={"task_id": context.task_id, "lead_id": result.lead_id},
            )

    async def run_concurrent(
        self,
        lead_ids: list[str],
        per_lead: PerLeadFn,
        context: StageContext,
    ) -> list[EnrichmentResult]:
        """Fan a batch out over at most ``max_concurrency`` in-flight leads."""
        progress = _BatchProgress(len(lead_ids))
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def process_with_semaphore(index: int, lead_id: str) -> None:
            async with semaphore:
                result = await self._run_one(lead_id, context, per_lead)
            await self._complete(progress, index, result, context)

        tasks = [
            process_with_semaphore(index, lead_id)
            for index, lead_id in enumerate(lead_ids)
        ]
        await asyncio.gather(*tasks)
        return [r for r in progress.results if r is not None]

    async def run_sequential(
        self,
        lead_ids: list[str],
        per_lead: PerLeadFn,
        context: StageContext,
    ) -> list[EnrichmentResult]:
        """Process the batch one lead at a time, in order."""
        progress = _BatchProgress(len(lead_ids))
        for index, lead_id in enumerate(lead_ids):
            result = await self._run_one(lead_id, context, per_lead)
            await self._complete(progress, index, result, context)
        return [r for r in progress.results if r is not None]


class AutomationOrchestrator:
    """Dispatches automation tasks through the stage executors.

    Attributes:
        store: Lead store façade.
        executors: Single-lead stage executors.
        runner: Batch runner used for every task.
    """

    def __init__(
        self,
        store: LeadStore,
        executors: StageExecutors,
        runner: Optional[BatchRunner] = None,
    ) -> None:
        self.store = store
        self.executors = executors
        self.runner = runner or BatchRunner(store)

    async def dispatch(self, task: AutomationTask) -> Optional[TaskResult]:
        """Process a task to completion.

        Never raises. Outcomes are written to the store; the returned
        TaskResult is informational and None when the task was skipped.
        """
        try:
            return await self._dispatch(task)
        except Exception as e:
            logger.exception("Task %s crashed", task.id)
            try:
                await self.store.update_task_status(
                    task.id, TaskStatus.FAILED, 0, 0, 0, error_message=f"internal error: {e}"
                )
            except Exception as store_error:
                logger.error("Could not mark task %s as failed: %s", task.id, store_error)
            return None

    async def _claim(self, task: AutomationTask) -> bool:
        """Check the stored status and claim the task.

        An unreadable status is treated as pending (fail open); a task that
        does not exist yet is inserted first. Returns False when the task is
        already claimed or cannot be moved to processing.
        """
        try:
            current = await self.store.get_task_status(task.id)
        except Exception as e:
            logger.warning(
                "Could not verify task status, proceeding anyway",
                extra={"task_id": task.id, "error": str(e)},
            )
            current = TaskStatus.PENDING
        else:
            if current is None:
                task.status = TaskStatus.PENDING
                try:
                    await self.store.create_task(task)
                except Exception as e:
                    logger.info("Task %s could not be registered - skipping: %s", task.id, e)
                    return False
                current = TaskStatus.PENDING

        if current != TaskStatus.PENDING:
            logger.info(
                "Task already processed or in progress - skipping",
                extra={"task_id": task.id, "current_status": current.value},
            )
            return False

        try:
            claimed = await self.store.claim_task(task.id)
        except Exception as e:
            logger.error(
                "Failed to update task status to processing",
                extra={"task_id": task.id, "error": str(e)},
            )
            return False
        if not claimed:
            logger.info("Task %s was claimed by another worker - skipping", task.id)
        return claimed

    async def _load_context(self, task: AutomationTask) -> StageContext:
        profile = None
        if task.business_profile_id:
            try:
                profile = await self.store.get_business_profile(task.business_profile_id)
            except Exception as e:
                logger.warning(
                    "Could not load business profile %s: %s", task.business_profile_id, e
                )
            if profile is None:
                logger.warning(
                    "Business profile %s not found, generating without it",
                    task.business_profile_id,
                )
        return StageContext(
            user_id=task.user_id,
            task_id=task.id,
            business_profile=profile,
            max_retries=task.max_retries,
        )

    async def _finish(
        self,
        task: AutomationTask,
        status: TaskStatus,
        total: int,
        succeeded: int,
        failed: int,
        error: Optional[str],
    ) -> None:
        try:
            await self.store.update_task_status(
                task.id, status, total, succeeded, failed, error_message=error
            )
        except Exception as e:
            logger.error("Failed to write final status for task %s: %s", task.id, e)

    async def _dispatch(self, task: AutomationTask) -> Optional[TaskResult]:
        started = time.monotonic()

        if not await self._claim(task):
            return None

        logger.info(
            "Task started",
            extra={
                "task_id": task.id,
                "user_id": task.user_id,
                "task_type": task.task_type,
                "priority": task.priority,
                "business_profile_id": task.business_profile_id,
            },
        )

        lead_ids = task.resolve_lead_ids()
        if not lead_ids:
            await self._finish(task, TaskStatus.FAILED, 0, 0, 0, NO_LEADS_ERROR)
            logger.warning("Task %s has no leads to process", task.id)
            return TaskResult(
                task_id=task.id,
                task_type=task.task_type,
                status=TaskStatus.FAILED,
                error=NO_LEADS_ERROR,
                duration_seconds=time.monotonic() - started,
            )

        total = len(lead_ids)
        try:
            await self.store.update_task_status(
                task.id, TaskStatus.PROCESSING, total, 0, 0
            )
        except Exception as e:
            logger.warning("Failed to record lead count for task %s: %s", task.id, e)

        try:
            task_type = TaskType(task.task_type)
        except ValueError:
            error = f"unknown task type: {task.task_type}"
            await self._finish(task, TaskStatus.FAILED, total, 0, 0, error)
            logger.error(error, extra={"task_id": task.id})
            return TaskResult(
                task_id=task.id,
                task_type=task.task_type,
                status=TaskStatus.FAILED,
                total=total,
                error=error,
                duration_seconds=time.monotonic() - started,
            )

        context = await self._load_context(task)
        results = await self._run_stage(task_type, lead_ids, context)

        succeeded = sum(1 for r in results if r.success)
        failed = len(results) - succeeded
        status = TaskStatus.FAILED if succeeded == 0 else TaskStatus.COMPLETED
        error = None
        if status == TaskStatus.FAILED:
            first = next((r for r in results if r.error), None)
            error = f"all {failed} leads failed"
            if first is not None:
                error += f"; lead {first.lead_id}: {first.error}"

        await self._finish(task, status, total, succeeded, failed, error)

        duration = time.monotonic() - started
        logger.info(
            "Task completed",
            extra={
                "task_id": task.id,
                "task_type": task.task_type,
                "status": status.value,
                "total": total,
                "succeeded": succeeded,
                "failed": failed,
                "duration_sec": round(duration, 2),
                "avg_per_lead_sec": round(duration / total, 2),
            },
        )

        return TaskResult(
            task_id=task.id,
            task_type=task.task_type,
            status=status,
            total=total,
            succeeded=succeeded,
            failed=failed,
            error=error,
            results=results,
            duration_seconds=duration,
        )

    async def _run_stage(
        self,
        task_type: TaskType,
        lead_ids: list[str],
        context: StageContext,
    ) -> list[EnrichmentResult]:
        if task_type == TaskType.LEAD_ENRICHMENT:
            return await self.runner.run_concurrent(lead_ids, self.executors.enrich, context)
        if task_type == TaskType.PRECALL_GENERATION:
            return await self.runner.run_sequential(lead_ids, self.executors.brief, context)
        if task_type == TaskType.EMAIL_GENERATION:
            return await self.runner.run_sequential(lead_ids, self.executors.email, context)
        return await self.runner.run_concurrent(lead_ids, self.executors.full, context)

    async def process_lead_created(self, lead: Lead) -> Optional[TaskResult]:
        """Run the owner's configured automations for a newly created lead.

        The task type follows the enabled automations: all three enabled
        runs the full pipeline, otherwise the first enabled of enrichment,
        pre-call and email. The task is persisted and dispatched inline.

        Returns:
            The TaskResult, or None when nothing was run.
        """
        try:
            settings = await self.store.get_automation_config(lead.user_id)
        except Exception as e:
            logger.warning("Could not load automation config for %s: %s", lead.user_id, e)
            return None
        if settings is None:
            logger.info(
                "No automation config found for user - skipping",
                extra={"user_id": lead.user_id, "lead_id": lead.id},
            )
            return None
        if not settings.any_enabled:
            logger.info(
                "All automations disabled for user - skipping",
                extra={"user_id": lead.user_id, "lead_id": lead.id},
            )
            return None

        task_type = task_type_for_settings(
            settings.auto_enrich_new_leads,
            settings.auto_generate_precall,
            settings.auto_generate_email,
        )

        if settings.daily_automation_limit > 0:
            midnight = datetime.now(timezone.utc).replace(
                hour=0, minute=0, second=0, microsecond=0, tzinfo=None
            )
            try:
                used = await self.store.count_tasks_since(lead.user_id, midnight)
            except Exception as e:
                logger.warning("Could not check daily automation limit: %s", e)
                used = 0
            if used >= settings.daily_automation_limit:
                logger.warning(
                    "Daily automation limit reached - skipping",
                    extra={
                        "user_id": lead.user_id,
                        "lead_id": lead.id,
                        "limit": settings.daily_automation_limit,
                    },
                )
                return None

        task = AutomationTask(
            id=f"auto-{lead.id}-{time.time_ns()}",
            user_id=lead.user_id,
            task_type=task_type.value,
            lead_id=lead.id,
            lead_ids=[],
            business_profile_id=settings.default_business_profile_id,
            priority=int(TaskPriority.MEDIUM),
            status=TaskStatus.PENDING,
            items_total=1,
            max_retries=self.executors.max_retries,
            created_at=utcnow(),
        )
        logger.info(
            "Auto-enrichment triggered",
            extra={"lead_id": lead.id, "user_id": lead.user_id, "task_type": task_type.value},
        )
        return await self.dispatch(task)


def task_type_for_settings(enrich: bool, precall: bool, email: bool) -> TaskType:
    """Map enabled automations to a task type."""
    if enrich and precall and email:
        return TaskType.FULL_ENRICHMENT
    if enrich:
        return TaskType.LEAD_ENRICHMENT
    if precall:
        return TaskType.PRECALL_GENERATION
    return TaskType.EMAIL_GENERATION


def build_orchestrator(
    store: Optional[LeadStore] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> AutomationOrchestrator:
    """Wire adapters, executors and the runner from configuration.

    A capability whose credentials are missing is disabled with a warning
    instead of failing startup.
    """
    store = store or LeadStore()
    usage = UsageTracker(store)

    scraper = None
    try:
        config.validate_for_scraping()
        scraper = FirecrawlClient(timeout_seconds=config.FIRECRAWL_TIMEOUT_SECONDS)
    except ConfigError as e:
        logger.warning("Website scraping disabled: %s", e)

    extractor = briefing = email_writer = None
    try:
        config.validate_for_generation()
        llm = LLMClient()
        extractor = DataExtractor(llm, usage)
        briefing = BriefingGenerator(llm, usage)
        email_writer = EmailGenerator(llm, usage)
    except ConfigError as e:
        logger.warning("Extraction and generation disabled: %s", e)

    executors = StageExecutors(
        store,
        scraper=scraper,
        extractor=extractor,
        briefing=briefing,
        email_writer=email_writer,
    )
    return AutomationOrchestrator(
        store, executors, BatchRunner(store, progress_callback=progress_callback)
    )
