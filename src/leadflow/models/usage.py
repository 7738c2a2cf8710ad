"""Usage metric model for LLM cost accounting."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, Integer, Float, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class OperationType(str, Enum):
    """AI operation being metered."""

    DATA_EXTRACTION = "data_extraction"
    PRE_CALL_REPORT = "pre_call_report"
    COLD_EMAIL = "cold_email"
    WEBSITE_SCRAPING = "website_scraping"


class UsageMetric(Base):
    """One metered LLM call, attributed to a user, task and lead."""

    __tablename__ = "usage_metrics"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    job_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Task or search job the call ran under"
    )
    lead_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<UsageMetric(operation={self.operation_type!r}, model={self.model!r}, "
            f"tokens={self.total_tokens})>"
        )
