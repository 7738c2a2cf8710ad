"""Cold email draft model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class EmailStatus(str, Enum):
    """Delivery state of a drafted email."""

    DRAFT = "draft"
    SENT = "sent"
    FAILED = "failed"


class ColdEmail(Base):
    """Cold email drafted for a lead.

    Attributes:
        lead_id: Target lead.
        subject: Email subject line.
        body: Email body text.
        status: EmailStatus, always DRAFT when written by the pipeline.
        business_profile_id: Profile used to personalize the draft.
        from_name: Sender name from the business profile.
        from_email: Sender address, filled in at send time.
        reply_to: Reply-to address, filled in at send time.
        to_email: First known address of the lead.
    """

    __tablename__ = "cold_emails"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    lead_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[EmailStatus] = mapped_column(
        SQLEnum(
            EmailStatus,
            name="cold_email_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=EmailStatus.DRAFT
    )
    business_profile_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    from_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    from_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reply_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    to_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<ColdEmail(id={self.id!r}, lead_id={self.lead_id!r}, subject={self.subject!r})>"
