"""Cold email drafting.

The model answers in labelled sections separated by ``---``::

    SUBJECT: ...
    ---
    BODY:
    ...
    ---
    CTA: ...
    ---
    PERSONALIZATION NOTES: ...

Portuguese labels (ASSUNTO, CORPO, NOTAS DE PERSONALIZAÇÃO) are accepted
as well, case-insensitively and with or without bold markers.
"""

import logging
import re
import time
from dataclasses import dataclass
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

SECTION_LABELS = [
    "SUBJECT", "ASSUNTO",
    "BODY", "CORPO",
    "CTA",
    "PERSONALIZATION NOTES", "NOTAS DE PERSONALIZAÇÃO",
]

EMAIL_INSTRUCTION = """You are a B2B copywriting and sales expert writing a first-touch cold email on behalf of the seller described below.

REQUIREMENTS:
- The body MUST have at least 2 paragraphs:
  - First paragraph: show you understand the prospect's business, citing something specific from the provided information
  - Second paragraph: connect a likely challenge to what the seller offers, with one concrete benefit
- Open with a professional greeting that does NOT use the recipient's name directly and does NOT use time-based greetings such as "Bom dia" or "Good morning"; use "Olá!" in Portuguese or "Hi there!" in English
- Keep it under 150 words, plain text, no placeholders in brackets
- End with a single low-commitment call to action
- Subject line under 60 characters, specific to the prospect

OUTPUT FORMAT (labels in English, content in the requested language):
SUBJECT: <subject line>

---

BODY:
<email body>

---

CTA: <call to action>

---

PERSONALIZATION NOTES: <what you personalized and why>"""


def build_email_instruction(custom_instruction: str = "") -> str:
    instruction = EMAIL_INSTRUCTION
    if custom_instruction:
        instruction += f"\n\nAdditional Instructions:\n{custom_instruction}"
    return instruction


class EmailGenerationError(Exception):
    """Raised when an email cannot be generated."""

    pass


@dataclass
class GeneratedEmail:
    """Parsed model output for one cold email."""

    subject: str = ""
    body: str = ""
    call_to_action: str = ""
    personalization_notes: str = ""
    model: Optional[str] = None


def _label_pattern(label: str) -> str:
    return rf"^[ \t]*\**[ \t]*{re.escape(label)}[ \t]*\**[ \t]*:\**"


_ANY_LABEL = re.compile(
    "|".join(_label_pattern(label) for label in SECTION_LABELS),
    re.IGNORECASE | re.MULTILINE,
)


def extract_email_section(response: str, section: str) -> str:
    """Return the text of one labelled section, or "" when absent."""
    match = re.search(_label_pattern(section), response, re.IGNORECASE | re.MULTILINE)
    if not match:
        return ""

    rest = response[match.end():]
    end = len(rest)
    separator = re.search(r"^[ \t]*---", rest, re.MULTILINE)
    if separator:
        end = separator.start()
    next_label = _ANY_LABEL.search(rest)
    if next_label and next_label.start() < end:
        end = next_label.start()
    return rest[:end].strip()


def parse_email_response(response: str) -> GeneratedEmail:
    """Parse a sectioned model answer; unlabelled text becomes the body."""
    email = GeneratedEmail(
        subject=extract_email_section(response, "SUBJECT")
        or extract_email_section(response, "ASSUNTO"),
        body=extract_email_section(response, "BODY")
        or extract_email_section(response, "CORPO"),
        call_to_action=extract_email_section(response, "CTA"),
        personalization_notes=extract_email_section(response, "PERSONALIZATION NOTES")
        or extract_email_section(response, "NOTAS DE PERSONALIZAÇÃO"),
    )
    if not email.subject and not email.body:
        email.body = response.strip()
    return email


class EmailGenerator:
    """Drafts cold emails with an LLM.

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
        self.timeout_seconds = timeout_seconds or config.EMAIL_TIMEOUT_SECONDS
        self.instruction = build_email_instruction(custom_instruction)

    def build_prompt(
        self,
        lead: Lead,
        pre_call_report: str = "",
        content: str = "",
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
        if lead.address:
            parts.append(f"- Location: {lead.address}")

        if profile is not None:
            parts += ["", "# Seller profile", profile.to_prompt_block()]

        if pre_call_report:
            parts += ["", "# Pre-call research", truncate_content(pre_call_report)]
        elif content:
            parts += ["", "# Company information", truncate_content(content)]

        parts.append("")
        if language == LANG_ENGLISH:
            parts.append("Write the email in English.")
        else:
            parts.append("Write the email in Brazilian Portuguese (pt-BR).")
        return "\n".join(parts)

    async def generate(
        self,
        lead: Lead,
        pre_call_report: str = "",
        content: str = "",
        context: Optional["StageContext"] = None,
    ) -> GeneratedEmail:
        """Draft a cold email for a lead.

        Args:
            lead: Lead being emailed.
            pre_call_report: Existing briefing used as grounding, if any.
            content: Fallback company content when there is no briefing.
            context: Task context for personalization and usage attribution.

        Returns:
            GeneratedEmail with subject and body.

        Raises:
            EmailGenerationError: If the model fails or omits subject or body.
        """
        prompt = self.build_prompt(lead, pre_call_report, content, context)
        started_at = time.monotonic()
        try:
            response = await self.llm.complete(
                self.instruction, prompt, timeout=self.timeout_seconds, temperature=0.7
            )
        except LLMError as e:
            await self.usage.track(
                context, OperationType.COLD_EMAIL, self.llm.model, prompt, "",
                started_at, success=False, error=str(e), lead_id=lead.id,
            )
            raise EmailGenerationError(str(e)) from e

        await self.usage.track(
            context, OperationType.COLD_EMAIL, response.model, prompt,
            response.text, started_at, success=True, lead_id=lead.id,
        )

        email = parse_email_response(response.text)
        email.model = response.model
        if not email.subject:
            raise EmailGenerationError("email response has no subject")
        if not email.body:
            raise EmailGenerationError("email response has no body")

        logger.info("Generated email for lead %s: %r", lead.id, email.subject)
        return email
