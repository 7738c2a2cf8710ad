"""Lead SQLAlchemy model for companies being enriched."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import String, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class LeadStatus(str, Enum):
    """Workflow status values written by the automation pipeline.

    The column is free text because the product UI moves leads through
    further stages of its own; only these values are set here.
    """

    NEW = "novo"
    EMAIL_DRAFTED = "email_gerado"


class Lead(Base):
    """SQLAlchemy model representing a prospective company.

    Leads arrive from search jobs or registry (CNPJ) imports. The enrichment
    stage overwrites the contact fields with data extracted from the
    company's website; the rest of the record is read-only to the pipeline.

    Attributes:
        id: Unique identifier for the lead (UUID).
        user_id: Owning user.
        job_id: Search job that produced the lead, if any.
        company_name: Company display name.
        contact_name: Best known contact person.
        contact_role: Role of the contact person.
        emails: Known email addresses, primary first.
        phones: Known phone numbers, primary first.
        website: Company website URL.
        address: Postal address or free-form location.
        social_media: Map of network name to profile URL.
        source: Where the lead came from (search, cnpj_import, manual).
        status: Workflow status string.
        extra_data: Registry lookup block used when no website content exists.
    """

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_role: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    emails: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    phones: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    social_media: Mapped[dict[str, str]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=LeadStatus.NEW.value,
        index=True,
    )

    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
        comment="Registry (Receita Federal) fields for CNPJ-imported leads"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    def __repr__(self) -> str:
        """Return string representation of the lead."""
        return f"<Lead(id={self.id!r}, company_name={self.company_name!r}, status={self.status!r})>"

    def to_dict(self) -> dict:
        """Convert lead to dictionary representation."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "company_name": self.company_name,
            "contact_name": self.contact_name,
            "contact_role": self.contact_role,
            "emails": list(self.emails or []),
            "phones": list(self.phones or []),
            "website": self.website,
            "address": self.address,
            "social_media": dict(self.social_media or {}),
            "source": self.source,
            "status": self.status,
            "extra_data": self.extra_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
