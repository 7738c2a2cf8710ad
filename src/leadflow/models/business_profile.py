"""Business profile model: the sender's company context."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from . import Base, utcnow


class BusinessProfile(Base):
    """Sender-side company description used to personalize generated content.

    Attributes:
        company_name: Sender company name.
        company_description: What the sender does.
        problem_solved: Problem the sender solves for customers.
        differentials: Selling points.
        success_case: A customer success story.
        communication_tone: Desired tone (e.g. "consultivo", "friendly").
        sender_name: Name signed on drafted emails.
        language: Optional explicit output language ("en", "pt-BR").
    """

    __tablename__ = "business_profiles"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    company_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    problem_solved: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    differentials: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    success_case: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    communication_tone: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sender_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<BusinessProfile(id={self.id!r}, company_name={self.company_name!r})>"

    def to_prompt_block(self) -> str:
        """Render the profile as a markdown block for LLM prompts."""
        lines = [f"- Company: {self.company_name}"]
        if self.company_description:
            lines.append(f"- What we do: {self.company_description}")
        if self.problem_solved:
            lines.append(f"- Problem we solve: {self.problem_solved}")
        if self.differentials:
            lines.append(f"- Differentials: {', '.join(self.differentials)}")
        if self.success_case:
            lines.append(f"- Success case: {self.success_case}")
        if self.communication_tone:
            lines.append(f"- Tone: {self.communication_tone}")
        if self.sender_name:
            lines.append(f"- Sender: {self.sender_name}")
        return "\n".join(lines)
