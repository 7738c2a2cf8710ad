"""Tests for task dispatch, batch execution and the lead-created entry point.

Dispatcher tests use the SQLite-backed store so that claims, counters and
final statuses are checked against persisted task rows. Stage executors
are replaced with coroutine doubles.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import add_all, make_extractor, make_lead, make_profile, make_scraper
from leadflow.context import StageContext
from leadflow.integrations.firecrawl import FirecrawlScrapeError
from leadflow.models import AutomationConfig, AutomationTask, TaskStatus, TaskType, utcnow
from leadflow.orchestrator import (
    AutomationOrchestrator,
    BatchRunner,
    TaskResult,
    task_type_for_settings,
)
from leadflow.stages import EnrichmentResult, StageExecutors


def make_task(task_id: str = "task-1", **overrides) -> AutomationTask:
    values = {
        "id": task_id,
        "user_id": "user-1",
        "task_type": TaskType.LEAD_ENRICHMENT.value,
        "lead_id": None,
        "lead_ids": ["lead-1", "lead-2", "lead-3"],
        "business_profile_id": None,
        "priority": 3,
        "status": TaskStatus.PENDING,
        "items_total": 0,
        "items_processed": 0,
        "items_succeeded": 0,
        "items_failed": 0,
        "retry_count": 0,
        "max_retries": 2,
        "created_at": utcnow(),
    }
    values.update(overrides)
    return AutomationTask(**values)


def make_executors(outcomes: dict[str, bool] | None = None) -> MagicMock:
    """Executors whose stages succeed unless outcomes maps the lead to False."""
    outcomes = outcomes or {}

    async def run(lead_id: str, context: StageContext, *args, **kwargs) -> EnrichmentResult:
        ok = outcomes.get(lead_id, True)
        return EnrichmentResult(
            lead_id=lead_id, success=ok, error=None if ok else f"{lead_id} broke"
        )

    executors = MagicMock()
    executors.max_retries = 2
    for name in ("enrich", "brief", "email", "full"):
        setattr(executors, name, AsyncMock(side_effect=run))
    return executors


# ============================================================================
# Batch runner
# ============================================================================


class TestBatchRunner:
    """Tests for bounded fan-out and progress reporting."""

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self):
        """Test that at most five leads are in flight at once."""
        in_flight = 0
        peak = 0

        async def per_lead(lead_id: str, context: StageContext) -> EnrichmentResult:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return EnrichmentResult(lead_id=lead_id, success=True)

        store = MagicMock()
        store.update_task_status = AsyncMock()
        runner = BatchRunner(store, max_concurrency=5)
        lead_ids = [f"lead-{i}" for i in range(20)]

        results = await runner.run_concurrent(lead_ids, per_lead, StageContext("user-1", "task-1"))

        assert peak == 5
        assert [r.lead_id for r in results] == lead_ids

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self):
        """Test that persisted counters never decrease and end at the batch size."""
        writes = []

        async def record(task_id, status, total, succeeded, failed, error_message=None):
            writes.append((succeeded, failed, succeeded + failed))

        async def per_lead(lead_id: str, context: StageContext) -> EnrichmentResult:
            await asyncio.sleep(0.001 * (hash(lead_id) % 5))
            return EnrichmentResult(lead_id=lead_id, success=lead_id != "lead-3")

        store = MagicMock()
        store.update_task_status = AsyncMock(side_effect=record)
        runner = BatchRunner(store, max_concurrency=3)

        await runner.run_concurrent(
            [f"lead-{i}" for i in range(8)], per_lead, StageContext("user-1", "task-1")
        )

        assert len(writes) == 8
        for before, after in zip(writes, writes[1:]):
            assert after[0] >= before[0]
            assert after[1] >= before[1]
            assert after[2] == before[2] + 1
        assert writes[-1] == (7, 1, 8)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failure(self):
        """Test that a raising per-lead function is folded into a failed result."""
        async def per_lead(lead_id: str, context: StageContext) -> EnrichmentResult:
            if lead_id == "lead-2":
                raise RuntimeError("kaboom")
            return EnrichmentResult(lead_id=lead_id, success=True)

        store = MagicMock()
        store.update_task_status = AsyncMock()
        runner = BatchRunner(store)

        results = await runner.run_sequential(
            ["lead-1", "lead-2", "lead-3"], per_lead, StageContext("user-1", "task-1")
        )

        assert [r.success for r in results] == [True, False, True]
        assert "kaboom" in results[1].error

    @pytest.mark.asyncio
    async def test_progress_persistence_failure_is_tolerated(self):
        """Test that a failing progress write does not stop the batch."""
        callback = MagicMock()
        store = MagicMock()
        store.update_task_status = AsyncMock(side_effect=RuntimeError("db gone"))
        runner = BatchRunner(store, progress_callback=callback)

        async def per_lead(lead_id: str, context: StageContext) -> EnrichmentResult:
            return EnrichmentResult(lead_id=lead_id, success=True)

        results = await runner.run_concurrent(
            ["lead-1", "lead-2"], per_lead, StageContext("user-1", "task-1")
        )

        assert len(results) == 2
        assert callback.call_count == 2
        callback.assert_called_with(2, 2, 2, 0)


# ============================================================================
# Dispatch
# ============================================================================


class TestDispatch:
    """Tests for claiming, stage selection and aggregation."""

    @pytest.mark.asyncio
    async def test_completed_when_some_leads_succeed(self, store, session_factory):
        """Test that a partially successful batch completes with exact counters."""
        await add_all(session_factory, make_task())
        executors = make_executors({"lead-2": False})
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        assert result.status == TaskStatus.COMPLETED
        task = await store.get_task("task-1")
        assert task.status == TaskStatus.COMPLETED
        assert (task.items_total, task.items_succeeded, task.items_failed) == (3, 2, 1)
        assert task.items_processed == 3
        assert task.started_at is not None
        assert task.completed_at is not None
        assert executors.enrich.await_count == 3

    @pytest.mark.asyncio
    async def test_failed_when_all_leads_fail(self, store, session_factory):
        """Test that a batch where every lead failed is marked failed with a reason."""
        await add_all(session_factory, make_task(lead_ids=["lead-1", "lead-2"]))
        executors = make_executors({"lead-1": False, "lead-2": False})
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        assert result.status == TaskStatus.FAILED
        task = await store.get_task("task-1")
        assert task.status == TaskStatus.FAILED
        assert task.items_failed == 2
        assert task.error_message.startswith("all 2 leads failed")
        assert "lead-1 broke" in task.error_message

    @pytest.mark.asyncio
    async def test_task_max_retries_limits_attempts(self, store, session_factory):
        """Test that a task with max_retries=0 scrapes each lead exactly once."""
        await add_all(
            session_factory,
            make_lead(),
            make_task(lead_ids=["lead-1"], max_retries=0),
        )
        scraper = make_scraper()
        scraper.scrape_url = AsyncMock(side_effect=FirecrawlScrapeError("blocked"))
        executors = StageExecutors(
            store, scraper=scraper, extractor=make_extractor(), max_retries=2, retry_delay=0
        )
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        assert result.status == TaskStatus.FAILED
        assert scraper.scrape_url.await_count == 1

    @pytest.mark.asyncio
    async def test_idempotent_claim(self, store, session_factory):
        """Test that a task no longer pending is skipped without touching it."""
        await add_all(session_factory, make_task(status=TaskStatus.PROCESSING, items_total=9))
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(make_task())

        assert result is None
        executors.enrich.assert_not_awaited()
        task = await store.get_task("task-1")
        assert task.status == TaskStatus.PROCESSING
        assert task.items_total == 9

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_claims_once(self, store, session_factory):
        """Test that two dispatches of the same task run it once."""
        await add_all(session_factory, make_task(lead_ids=["lead-1"]))
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        results = await asyncio.gather(
            orchestrator.dispatch(await store.get_task("task-1")),
            orchestrator.dispatch(await store.get_task("task-1")),
        )

        assert sum(1 for r in results if r is not None) == 1
        assert executors.enrich.await_count == 1

    @pytest.mark.asyncio
    async def test_unpersisted_task_is_registered(self, store):
        """Test that a task unknown to the store is inserted and then processed."""
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(make_task("task-new", lead_ids=["lead-1"]))

        assert result.status == TaskStatus.COMPLETED
        task = await store.get_task("task-new")
        assert task.status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_read_failure_proceeds(self):
        """Test that an unreadable status is treated as pending."""
        store = MagicMock()
        store.get_task_status = AsyncMock(side_effect=RuntimeError("timeout"))
        store.claim_task = AsyncMock(return_value=True)
        store.update_task_status = AsyncMock()
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(make_task(lead_ids=["lead-1"]))

        assert result.status == TaskStatus.COMPLETED
        store.claim_task.assert_awaited_once_with("task-1")

    @pytest.mark.asyncio
    async def test_claim_write_failure_aborts(self):
        """Test that a failed transition to processing stops the dispatch."""
        store = MagicMock()
        store.get_task_status = AsyncMock(return_value=TaskStatus.PENDING)
        store.claim_task = AsyncMock(side_effect=RuntimeError("read-only"))
        store.update_task_status = AsyncMock()
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(make_task())

        assert result is None
        executors.enrich.assert_not_awaited()
        store.update_task_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_leads_fails(self, store, session_factory):
        """Test that a task without lead ids fails with a fixed message."""
        await add_all(session_factory, make_task(lead_ids=[]))
        orchestrator = AutomationOrchestrator(store, make_executors())

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        assert result.status == TaskStatus.FAILED
        task = await store.get_task("task-1")
        assert task.error_message == "no leads to process"
        assert task.items_total == 0

    @pytest.mark.asyncio
    async def test_unknown_task_type_fails(self, store, session_factory):
        """Test that an unrecognised task type fails the task."""
        await add_all(session_factory, make_task(task_type="lead_scoring"))
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        await orchestrator.dispatch(await store.get_task("task-1"))

        task = await store.get_task("task-1")
        assert task.status == TaskStatus.FAILED
        assert task.error_message == "unknown task type: lead_scoring"
        assert task.items_total == 3
        executors.enrich.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_lead_processed_before_batch(self, store, session_factory):
        """Test that lead_id is processed first, followed by lead_ids in order."""
        await add_all(
            session_factory,
            make_task(
                task_type=TaskType.PRECALL_GENERATION.value,
                lead_id="lead-0",
                lead_ids=["lead-1", "lead-2"],
            ),
        )
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        called = [c.args[0] for c in executors.brief.await_args_list]
        assert called == ["lead-0", "lead-1", "lead-2"]
        assert result.total == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "task_type,stage",
        [
            (TaskType.LEAD_ENRICHMENT, "enrich"),
            (TaskType.PRECALL_GENERATION, "brief"),
            (TaskType.EMAIL_GENERATION, "email"),
            (TaskType.FULL_ENRICHMENT, "full"),
        ],
    )
    async def test_stage_selection(self, store, session_factory, task_type, stage):
        """Test that each task type runs its stage."""
        await add_all(session_factory, make_task(task_type=task_type.value, lead_ids=["lead-1"]))
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        await orchestrator.dispatch(await store.get_task("task-1"))

        assert getattr(executors, stage).await_count == 1

    @pytest.mark.asyncio
    async def test_business_profile_attached_to_context(self, store, session_factory):
        """Test that the task's business profile reaches the executors."""
        await add_all(
            session_factory,
            make_profile(),
            make_task(business_profile_id="profile-1", lead_ids=["lead-1"]),
        )
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        await orchestrator.dispatch(await store.get_task("task-1"))

        context = executors.enrich.await_args.args[1]
        assert context.task_id == "task-1"
        assert context.user_id == "user-1"
        assert context.business_profile.sender_name == "Ana Souza"

    @pytest.mark.asyncio
    async def test_missing_profile_still_runs(self, store, session_factory):
        """Test that an unknown profile id only degrades personalization."""
        await add_all(
            session_factory, make_task(business_profile_id="nope", lead_ids=["lead-1"])
        )
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.dispatch(await store.get_task("task-1"))

        assert result.status == TaskStatus.COMPLETED
        assert executors.enrich.await_args.args[1].business_profile is None


class TestTaskResult:
    """Tests for the dispatch summary record."""

    def test_to_dict(self):
        """Test serialization of a task result."""
        result = TaskResult(
            task_id="task-1",
            task_type="lead_enrichment",
            status=TaskStatus.COMPLETED,
            total=1,
            succeeded=1,
            results=[EnrichmentResult(lead_id="lead-1", success=True, enriched=True)],
        )

        data = result.to_dict()

        assert data["status"] == "completed"
        assert data["results"][0]["enriched"] is True


# ============================================================================
# Lead created
# ============================================================================


class TestTaskTypeForSettings:
    """Tests for deriving a task type from enabled automations."""

    def test_all_enabled_is_full(self):
        assert task_type_for_settings(True, True, True) == TaskType.FULL_ENRICHMENT

    def test_enrich_wins_over_partial_set(self):
        assert task_type_for_settings(True, False, True) == TaskType.LEAD_ENRICHMENT

    def test_precall_only(self):
        assert task_type_for_settings(False, True, True) == TaskType.PRECALL_GENERATION

    def test_email_only(self):
        assert task_type_for_settings(False, False, True) == TaskType.EMAIL_GENERATION


class TestProcessLeadCreated:
    """Tests for automatic processing of newly created leads."""

    @pytest.mark.asyncio
    async def test_runs_configured_pipeline(self, store, session_factory):
        """Test that a full-automation user gets a single-lead full task."""
        await add_all(
            session_factory,
            make_lead(),
            AutomationConfig(
                user_id="user-1",
                auto_enrich_new_leads=True,
                auto_generate_precall=True,
                auto_generate_email=True,
                default_business_profile_id="profile-1",
            ),
        )
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.process_lead_created(make_lead())

        assert result.status == TaskStatus.COMPLETED
        assert result.task_type == TaskType.FULL_ENRICHMENT.value
        assert result.task_id.startswith("auto-lead-1-")
        task = await store.get_task(result.task_id)
        assert task.lead_id == "lead-1"
        assert task.priority == 2
        assert task.business_profile_id == "profile-1"
        executors.full.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_all_disabled_skips(self, store, session_factory):
        """Test that nothing runs when every automation is off."""
        await add_all(session_factory, AutomationConfig(user_id="user-1"))
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.process_lead_created(make_lead())

        assert result is None
        assert await store.count_tasks_since("user-1", utcnow() - timedelta(days=1)) == 0

    @pytest.mark.asyncio
    async def test_missing_config_skips(self, store):
        """Test that a user without automation settings is skipped."""
        orchestrator = AutomationOrchestrator(store, make_executors())

        assert await orchestrator.process_lead_created(make_lead()) is None

    @pytest.mark.asyncio
    async def test_daily_limit_enforced(self, store, session_factory):
        """Test that the daily automation cap stops further tasks."""
        await add_all(
            session_factory,
            AutomationConfig(
                user_id="user-1", auto_generate_email=True, daily_automation_limit=1
            ),
            make_task("earlier-today", status=TaskStatus.COMPLETED),
        )
        executors = make_executors()
        orchestrator = AutomationOrchestrator(store, executors)

        result = await orchestrator.process_lead_created(make_lead())

        assert result is None
        executors.email.assert_not_awaited()
