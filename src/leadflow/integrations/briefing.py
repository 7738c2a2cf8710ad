"""Pre-call briefing generation.

Produces a markdown sales briefing for a lead from its structured fields
and whatever content is available (scraped website or registry profile),
personalized with the sender's business profile and written in the
language picked by ``detect_language``.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

from ..config import config
from ..models import Lead, OperationType
from ..utils.language import LANG_ENGLISH, detect_language
from .extractor import truncate_content
from .llm import LLMClient, LLMError
from .usage import UsageTracker

if TYPE_CHECKING:
    from ..context import StageContext

logger = logging.getLogger(__name__)

REPORT_SECTIONS = [
    "Company Name",
    "Industry",
    "Company Summary",
    "Key Services",
    "Target Audience",
    "Potential Pain Points",
    "Talking Points",
    "Competitive Advantages",
    "Contact Info",
    "Recommended Approach",
]

BRIEFING_INSTRUCTION = """You are a multilingual sales intelligence analyst preparing a salesperson for a first call with a prospect.

Using ONLY the company information provided, write a pre-call report in markdown with these sections, each as a "## " heading:

{sections}

RULES:
- Base every statement on the provided content; do not invent facts, numbers or names
- When information is missing, say so briefly instead of guessing
- "Key Services", "Potential Pain Points", "Talking Points" and "Competitive Advantages" are bullet lists
- When a seller profile is given, connect the prospect's likely pain points to what the seller offers in "Talking Points" and "Recommended Approach"
- Be concise and practical; the reader has five minutes before the call"""


def build_briefing_instruction(custom_instruction: str = "") -> str:
    instruction = BRIEFING_INSTRUCTION.format(
        sections="\n".join(f"- {s}" for s in REPORT_SECTIONS)
    )
    if custom_instruction:
        instruction += f"\n\nAdditional Instructions:\n{custom_instruction}"
    return instruction


class BriefingError(Exception):
    """Raised when a briefing cannot be generated."""

    pass


class BriefingGenerator:
    """Generates pre-call briefings with an LLM.

    Args:
        llm: Chat-completion client.
        usage: Usage tracker for metering.
        timeout_seconds: Deadline per generation call.
        custom_instruction: Extra guidance appended to the system instruction.
    """

    def __init__(
        self,
        llm: LLMClient,
        usage: Optional[UsageTracker] = None,
        timeout_seconds: Optional[float] = None,
        custom_instruction: str = "",
    ) -> None:
        self.llm = llm
        self.usage = usage or UsageTracker()
        self.timeout_seconds = timeout_seconds or config.BRIEFING_TIMEOUT_SECONDS
        self.instruction = build_briefing_instruction(custom_instruction)

    def build_prompt(
        self,
        lead: Lead,
        content: str,
        context: Optional["StageContext"] = None,
    ) -> str:
        profile = context.business_profile if context else None
        language = detect_language(profile, lead.address or "")

        parts = ["# Prospect", f"- Company: {lead.company_name or 'unknown'}"]
        if lead.website:
            parts.append(f"- Website: {lead.website}")
        if lead.contact_name:
            role = f" ({lead.contact_role})" if lead.contact_role else ""
            parts.append(f"- Contact: {lead.contact_name}{role}")
        if lead.emails:
            parts.append(f"- Emails: {', '.join(lead.emails)}")
        if lead.phones:
            parts.append(f"- Phones: {', '.join(lead.phones)}")
        if lead.address:
            parts.append(f"- Address: {lead.address}")

        if profile is not None:
            parts += ["", "# Seller profile", profile.to_prompt_block()]

        parts += [
            "",
            "# Company content",
            truncate_content(content) if content else "(no website or registry content available)",
            "",
        ]
        if language == LANG_ENGLISH:
            parts.append("Write the report in English.")
        else:
            parts.append("Write the report in Brazilian Portuguese (pt-BR), keeping the section headings in English.")
        return "\n".join(parts)

    async def generate(
        self,
        lead: Lead,
        content: str,
        context: Optional["StageContext"] = None,
    ) -> str:
        """Generate a briefing for a lead.

        Args:
            lead: Lead being briefed.
            content: Website markdown or synthesized registry profile.
            context: Task context for personalization and usage attribution.

        Returns:
            Markdown briefing.

        Raises:
            BriefingError: If the model call fails.
        """
        prompt = self.build_prompt(lead, content, context)
        started_at = time.monotonic()
        try:
            response = await self.llm.complete(
                self.instruction, prompt, timeout=self.timeout_seconds
            )
        except LLMError as e:
            await self.usage.track(
                context, OperationType.PRE_CALL_REPORT, self.llm.model, prompt, "",
                started_at, success=False, error=str(e), lead_id=lead.id,
            )
            raise BriefingError(str(e)) from e

        await self.usage.track(
            context, OperationType.PRE_CALL_REPORT, response.model, prompt,
            response.text, started_at, success=True, lead_id=lead.id,
        )
        logger.info(
            "Generated pre-call report for lead %s (%d chars, %s)",
            lead.id,
            len(response.text),
            response.model,
        )
        return response.text.strip()
