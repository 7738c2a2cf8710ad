"""Per-user automation settings model."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class AutomationConfig(Base):
    """Which stages run automatically when a user's lead is created.

    Attributes:
        user_id: Owning user (one row per user).
        auto_enrich_new_leads: Scrape and extract on lead creation.
        auto_generate_precall: Generate a pre-call briefing.
        auto_generate_email: Draft a cold email.
        default_business_profile_id: Profile used for automatic runs.
        daily_automation_limit: Max automatic tasks per user per UTC day.
    """

    __tablename__ = "automation_configs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, index=True
    )
    auto_enrich_new_leads: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    auto_generate_precall: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    auto_generate_email: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    default_business_profile_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True
    )
    daily_automation_limit: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def any_enabled(self) -> bool:
        return bool(
            self.auto_enrich_new_leads
            or self.auto_generate_precall
            or self.auto_generate_email
        )

    def __repr__(self) -> str:
        return (
            f"<AutomationConfig(user_id={self.user_id!r}, "
            f"enrich={self.auto_enrich_new_leads}, "
            f"precall={self.auto_generate_precall}, "
            f"email={self.auto_generate_email})>"
        )
