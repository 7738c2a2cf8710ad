"""Automation task SQLAlchemy model."""

import uuid
from datetime import datetime
from enum import Enum, IntEnum
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, Enum as SQLEnum, JSON
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class TaskType(str, Enum):
    """Stage combination a task runs."""

    LEAD_ENRICHMENT = "lead_enrichment"
    PRECALL_GENERATION = "precall_generation"
    EMAIL_GENERATION = "email_generation"
    FULL_ENRICHMENT = "full_enrichment"


class TaskStatus(str, Enum):
    """Lifecycle of a task: pending -> processing -> completed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskPriority(IntEnum):
    """Advisory priority rank; lower is more urgent."""

    HIGH = 1
    MEDIUM = 2
    LOW = 3


class AutomationTask(Base):
    """SQLAlchemy model for one dispatched unit of automation work.

    A task targets a single lead (``lead_id``), a batch (``lead_ids``) or
    both; the dispatcher processes the single id first, then the batch in
    order. Counters are written as the batch progresses and are never
    decreased.

    Attributes:
        id: Task identifier (caller- or system-generated).
        user_id: Owning user, used for usage attribution.
        task_type: One of the TaskType values. Stored as text so that an
            unrecognised type can still be recorded as a failed task.
        lead_id: Single target lead.
        lead_ids: Ordered batch of target leads.
        business_profile_id: Sender profile used to personalize content.
        priority: Advisory TaskPriority rank.
        status: Current TaskStatus.
        items_total: Number of leads resolved at dispatch time.
        items_processed: succeeded + failed.
        items_succeeded: Leads that finished successfully.
        items_failed: Leads that failed.
        error_message: Task-level diagnostic.
        retry_count: Reserved for external re-submission bookkeeping.
        max_retries: Per-stage retry budget.
    """

    __tablename__ = "automation_tasks"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)

    lead_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    lead_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    business_profile_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True
    )

    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=int(TaskPriority.MEDIUM)
    )
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(
            TaskStatus,
            name="automation_task_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=TaskStatus.PENDING,
        index=True
    )

    items_total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def resolve_lead_ids(self) -> list[str]:
        """Return target lead ids: the single id first, then the batch."""
        lead_ids: list[str] = []
        if self.lead_id:
            lead_ids.append(self.lead_id)
        lead_ids.extend(self.lead_ids or [])
        return lead_ids

    def __repr__(self) -> str:
        """Return string representation of the task."""
        status = self.status.value if self.status else None
        return (
            f"<AutomationTask(id={self.id!r}, task_type={self.task_type!r}, "
            f"status={status!r})>"
        )

    def to_dict(self) -> dict:
        """Convert task to dictionary representation."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "task_type": self.task_type,
            "lead_id": self.lead_id,
            "lead_ids": list(self.lead_ids or []),
            "business_profile_id": self.business_profile_id,
            "priority": self.priority,
            "status": self.status.value if self.status else None,
            "items_total": self.items_total,
            "items_processed": self.items_processed,
            "items_succeeded": self.items_succeeded,
            "items_failed": self.items_failed,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
