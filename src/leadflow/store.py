"""Data-access façade over the lead automation tables.

Everything the pipeline reads or writes goes through ``LeadStore``: task
status and counters, lead records, briefings, email drafts, business
profiles, automation settings and usage metrics. Each call opens its own
short session, so one store instance can be shared by many concurrently
running lead executors.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import (
    AutomationConfig,
    AutomationTask,
    BusinessProfile,
    ColdEmail,
    Lead,
    PreCallReport,
    TaskStatus,
    UsageMetric,
    get_db_session,
    to_naive_utc,
    utcnow,
)

if TYPE_CHECKING:
    from .integrations.extractor import ExtractedData

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a read or write against the database fails."""

    pass


class LeadNotFoundError(StoreError):
    """Raised when a lead id does not exist."""

    pass


class TaskNotFoundError(StoreError):
    """Raised when a task id does not exist."""

    pass


@dataclass
class OperationStats:
    """Usage statistics for one operation type."""

    operation_type: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0
    total_duration_ms: int = 0

    @property
    def success_rate(self) -> float:
        if not self.total_calls:
            return 0.0
        return self.successful_calls / self.total_calls * 100

    @property
    def avg_duration_ms(self) -> float:
        if not self.total_calls:
            return 0.0
        return self.total_duration_ms / self.total_calls

    def add(self, metric: UsageMetric) -> None:
        self.total_calls += 1
        if metric.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
        self.total_input_tokens += metric.input_tokens
        self.total_output_tokens += metric.output_tokens
        self.total_tokens += metric.total_tokens
        self.total_cost_usd += metric.estimated_cost_usd
        self.total_duration_ms += metric.duration_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_type": self.operation_type,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "success_rate": round(self.success_rate, 2),
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "total_cost_usd": round(self.total_cost_usd, 6),
            "avg_duration_ms": round(self.avg_duration_ms, 1),
        }


@dataclass
class UsageSummary:
    """Aggregate usage over a period, with a per-operation breakdown."""

    totals: OperationStats = field(default_factory=lambda: OperationStats("all"))
    by_operation: dict[str, OperationStats] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        totals = self.totals.to_dict()
        totals.pop("operation_type")
        calls = self.totals.total_calls
        totals["avg_cost_per_call"] = (
            round(self.totals.total_cost_usd / calls, 6) if calls else 0.0
        )
        totals["avg_tokens_per_call"] = (
            round(self.totals.total_tokens / calls, 1) if calls else 0.0
        )
        return {
            "summary": totals,
            "by_operation": [s.to_dict() for s in self.by_operation.values()],
        }


@dataclass
class DailyUsage:
    """Usage totals for one UTC calendar day."""

    date: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0

    def add(self, metric: UsageMetric) -> None:
        self.total_calls += 1
        if metric.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
        self.total_tokens += metric.total_tokens
        self.total_cost_usd += metric.estimated_cost_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "total_tokens": self.total_tokens,
            "total_cost_usd": round(self.total_cost_usd, 6),
        }


@dataclass
class LeadGenerationStats:
    """Pipeline output counts for a user over a period."""

    total_tasks_processed: int = 0
    total_leads_generated: int = 0
    total_emails_generated: int = 0
    total_reports_generated: int = 0
    total_cost_usd: float = 0.0

    @property
    def avg_leads_per_task(self) -> float:
        if not self.total_tasks_processed:
            return 0.0
        return self.total_leads_generated / self.total_tasks_processed

    @property
    def avg_cost_per_lead(self) -> float:
        if not self.total_leads_generated:
            return 0.0
        return self.total_cost_usd / self.total_leads_generated

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_tasks_processed": self.total_tasks_processed,
            "total_leads_generated": self.total_leads_generated,
            "total_emails_generated": self.total_emails_generated,
            "total_reports_generated": self.total_reports_generated,
            "avg_leads_per_task": round(self.avg_leads_per_task, 2),
            "avg_cost_per_lead": round(self.avg_cost_per_lead, 6),
        }


def _in_range(column: Any, start: Optional[datetime], end: Optional[datetime]) -> list[Any]:
    """Inclusive date-range criteria on a naive-UTC timestamp column."""
    criteria = []
    if start is not None:
        criteria.append(column >= to_naive_utc(start))
    if end is not None:
        criteria.append(column <= to_naive_utc(end))
    return criteria


class LeadStore:
    """Async façade over the lead automation tables.

    Args:
        session_factory: Optional session factory. Defaults to the
            process-wide factory from ``DatabaseManager``.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._session_factory = session_factory

    def _session(self):
        return get_db_session(self._session_factory)

    # =========================================================================
    # Automation tasks
    # =========================================================================

    async def create_task(self, task: AutomationTask) -> AutomationTask:
        """Persist a new task."""
        try:
            async with self._session() as session:
                session.add(task)
            return task
        except SQLAlchemyError as e:
            raise StoreError(f"failed to create task {task.id}: {e}") from e

    async def get_task(self, task_id: str) -> Optional[AutomationTask]:
        try:
            async with self._session() as session:
                return await session.get(AutomationTask, task_id)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get task {task_id}: {e}") from e

    async def get_task_status(self, task_id: str) -> Optional[TaskStatus]:
        """Return the persisted status of a task, or None if it does not exist."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(AutomationTask.status).where(AutomationTask.id == task_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get status of task {task_id}: {e}") from e

    async def claim_task(self, task_id: str) -> bool:
        """Move a task from pending to processing with zeroed counters.

        The update is conditional on the task still being pending, so of two
        concurrent claims at most one succeeds.

        Returns:
            True if this call claimed the task.
        """
        try:
            async with self._session() as session:
                result = await session.execute(
                    update(AutomationTask)
                    .where(
                        AutomationTask.id == task_id,
                        AutomationTask.status == TaskStatus.PENDING,
                    )
                    .values(
                        status=TaskStatus.PROCESSING,
                        items_processed=0,
                        items_succeeded=0,
                        items_failed=0,
                        started_at=utcnow(),
                    )
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreError(f"failed to claim task {task_id}: {e}") from e

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        total: int,
        succeeded: int,
        failed: int,
        error_message: Optional[str] = None,
    ) -> None:
        """Write task status and counters.

        ``items_processed`` is always ``succeeded + failed``. ``started_at``
        is stamped when entering processing and ``completed_at`` on a
        terminal status.

        Raises:
            TaskNotFoundError: If the task does not exist.
            StoreError: If the write fails.
        """
        try:
            async with self._session() as session:
                task = await session.get(AutomationTask, task_id)
                if task is None:
                    raise TaskNotFoundError(f"task {task_id} not found")

                task.status = status
                task.items_total = total
                task.items_succeeded = succeeded
                task.items_failed = failed
                task.items_processed = succeeded + failed
                if error_message is not None:
                    task.error_message = error_message

                now = utcnow()
                if status == TaskStatus.PROCESSING and task.started_at is None:
                    task.started_at = now
                if status.is_terminal:
                    task.completed_at = now
        except SQLAlchemyError as e:
            raise StoreError(f"failed to update task {task_id}: {e}") from e

    async def count_tasks_since(self, user_id: str, since: datetime) -> int:
        """Count a user's tasks created at or after ``since``."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(func.count())
                    .select_from(AutomationTask)
                    .where(
                        AutomationTask.user_id == user_id,
                        AutomationTask.created_at >= to_naive_utc(since),
                    )
                )
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"failed to count tasks for {user_id}: {e}") from e

    # =========================================================================
    # Leads
    # =========================================================================

    async def get_lead(self, lead_id: str) -> Lead:
        """Fetch a lead.

        Raises:
            LeadNotFoundError: If the lead does not exist.
            StoreError: If the read fails.
        """
        try:
            async with self._session() as session:
                lead = await session.get(Lead, lead_id)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get lead {lead_id}: {e}") from e
        if lead is None:
            raise LeadNotFoundError(f"lead {lead_id} not found")
        return lead

    async def update_lead_enrichment(self, lead_id: str, data: "ExtractedData") -> None:
        """Overwrite a lead's contact fields with extracted values.

        Only non-empty extracted fields are written; company name, website
        and everything else on the lead is left untouched.
        """
        updates: dict[str, Any] = {}
        if data.contact:
            updates["contact_name"] = data.contact
        if data.contact_role:
            updates["contact_role"] = data.contact_role
        if data.emails:
            updates["emails"] = list(data.emails)
        if data.phones:
            updates["phones"] = list(data.phones)
        if data.address:
            updates["address"] = data.address
        if data.social_media:
            updates["social_media"] = dict(data.social_media)

        if not updates:
            logger.debug("No enrichment fields to write for lead %s", lead_id)
            return

        try:
            async with self._session() as session:
                lead = await session.get(Lead, lead_id)
                if lead is None:
                    raise LeadNotFoundError(f"lead {lead_id} not found")
                for key, value in updates.items():
                    setattr(lead, key, value)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to update lead {lead_id}: {e}") from e

        logger.debug("Lead %s enriched: %s", lead_id, ", ".join(sorted(updates)))

    async def update_lead_status(self, lead_id: str, status: str) -> None:
        try:
            async with self._session() as session:
                lead = await session.get(Lead, lead_id)
                if lead is None:
                    raise LeadNotFoundError(f"lead {lead_id} not found")
                lead.status = status
        except SQLAlchemyError as e:
            raise StoreError(f"failed to update status of lead {lead_id}: {e}") from e

    # =========================================================================
    # Pre-call reports
    # =========================================================================

    async def lead_has_pre_call_report(self, lead_id: str) -> bool:
        return await self._exists(PreCallReport, PreCallReport.lead_id == lead_id)

    async def get_pre_call_report(self, lead_id: str) -> Optional[str]:
        """Return the briefing text for a lead, or None."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(PreCallReport.content).where(PreCallReport.lead_id == lead_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get pre-call report for {lead_id}: {e}") from e

    async def insert_pre_call_report(self, lead_id: str, content: str) -> None:
        """Insert a briefing, replacing any existing one for the lead."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(PreCallReport).where(PreCallReport.lead_id == lead_id)
                )
                report = result.scalar_one_or_none()
                if report is None:
                    session.add(PreCallReport(lead_id=lead_id, content=content))
                else:
                    report.content = content
        except SQLAlchemyError as e:
            raise StoreError(f"failed to save pre-call report for {lead_id}: {e}") from e

    # =========================================================================
    # Cold emails
    # =========================================================================

    async def lead_has_email(self, lead_id: str) -> bool:
        return await self._exists(ColdEmail, ColdEmail.lead_id == lead_id)

    async def insert_cold_email(self, email: ColdEmail) -> str:
        """Persist an email draft and return its id."""
        try:
            async with self._session() as session:
                session.add(email)
                await session.flush()
                return email.id
        except SQLAlchemyError as e:
            raise StoreError(f"failed to save email for {email.lead_id}: {e}") from e

    # =========================================================================
    # Profiles and settings
    # =========================================================================

    async def get_business_profile(self, profile_id: str) -> Optional[BusinessProfile]:
        try:
            async with self._session() as session:
                return await session.get(BusinessProfile, profile_id)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get business profile {profile_id}: {e}") from e

    async def get_automation_config(self, user_id: str) -> Optional[AutomationConfig]:
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(AutomationConfig).where(AutomationConfig.user_id == user_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get automation config for {user_id}: {e}") from e

    # =========================================================================
    # Usage metrics
    # =========================================================================

    async def insert_usage_metric(self, metric: UsageMetric) -> None:
        try:
            async with self._session() as session:
                session.add(metric)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to save usage metric: {e}") from e

    async def list_usage_metrics(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[UsageMetric]:
        query = select(UsageMetric).where(
            UsageMetric.user_id == user_id,
            *_in_range(UsageMetric.created_at, start, end),
        )
        try:
            async with self._session() as session:
                result = await session.execute(query.order_by(UsageMetric.created_at))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"failed to get usage metrics for {user_id}: {e}") from e

    async def get_usage_summary(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageSummary:
        """Aggregate a user's metered calls over an optional date range."""
        summary = UsageSummary()
        for metric in await self.list_usage_metrics(user_id, start, end):
            summary.totals.add(metric)
            stats = summary.by_operation.setdefault(
                metric.operation_type, OperationStats(metric.operation_type)
            )
            stats.add(metric)
        return summary

    async def get_usage_by_operation(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[OperationStats]:
        summary = await self.get_usage_summary(user_id, start, end)
        return list(summary.by_operation.values())

    async def get_daily_usage(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[DailyUsage]:
        """Usage grouped by UTC calendar day, oldest day first."""
        days: dict[str, DailyUsage] = {}
        for metric in await self.list_usage_metrics(user_id, start, end):
            day = metric.created_at.strftime("%Y-%m-%d")
            days.setdefault(day, DailyUsage(day)).add(metric)
        return [days[day] for day in sorted(days)]

    async def get_lead_generation_stats(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> LeadGenerationStats:
        """Count a user's tasks, leads, briefings and email drafts in a period.

        Briefings and drafts are attributed to the user through their lead
        and dated by their own creation time.
        """
        stats = LeadGenerationStats(
            total_tasks_processed=await self._count(
                AutomationTask,
                AutomationTask.user_id == user_id,
                *_in_range(AutomationTask.created_at, start, end),
            ),
            total_leads_generated=await self._count(
                Lead,
                Lead.user_id == user_id,
                *_in_range(Lead.created_at, start, end),
            ),
            total_emails_generated=await self._count_for_user_leads(
                ColdEmail, user_id, *_in_range(ColdEmail.created_at, start, end)
            ),
            total_reports_generated=await self._count_for_user_leads(
                PreCallReport, user_id, *_in_range(PreCallReport.created_at, start, end)
            ),
        )
        summary = await self.get_usage_summary(user_id, start, end)
        stats.total_cost_usd = summary.totals.total_cost_usd
        return stats

    async def _count(self, model: type, *criteria: Any) -> int:
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(func.count()).select_from(model).where(*criteria)
                )
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"failed to query {model.__tablename__}: {e}") from e

    async def _count_for_user_leads(self, model: type, user_id: str, *criteria: Any) -> int:
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(func.count())
                    .select_from(model)
                    .join(Lead, Lead.id == model.lead_id)
                    .where(Lead.user_id == user_id, *criteria)
                )
                return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"failed to query {model.__tablename__}: {e}") from e

    async def _exists(self, model: type, *criteria: Any) -> bool:
        return await self._count(model, *criteria) > 0
