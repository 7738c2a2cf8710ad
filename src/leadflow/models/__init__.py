"""Lead automation database models.

This module contains SQLAlchemy models for leads, automation tasks, user
automation settings, business profiles and the generated artifacts
(pre-call reports, cold emails, usage metrics).
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp used for all DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in the database.

    Naive values are assumed to be UTC already and are returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Import models to register them with Base metadata
from .lead import Lead, LeadStatus
from .task import AutomationTask, TaskType, TaskStatus, TaskPriority
from .automation_config import AutomationConfig
from .business_profile import BusinessProfile
from .report import PreCallReport
from .email import ColdEmail, EmailStatus
from .usage import UsageMetric, OperationType

# Import database utilities
from .database import (
    DatabaseManager,
    get_db_session,
    init_database,
    close_database,
    create_test_engine,
)

__all__ = [
    # Base class
    "Base",
    "utcnow",
    "to_naive_utc",
    # Models
    "Lead",
    "LeadStatus",
    "AutomationTask",
    "TaskType",
    "TaskStatus",
    "TaskPriority",
    "AutomationConfig",
    "BusinessProfile",
    "PreCallReport",
    "ColdEmail",
    "EmailStatus",
    "UsageMetric",
    "OperationType",
    # Database utilities
    "DatabaseManager",
    "get_db_session",
    "init_database",
    "close_database",
    "create_test_engine",
]
