"""Structured contact extraction from scraped website content.

The LLM is asked for a single JSON object. Its answer is cleaned of code
fences, the outermost object is parsed, and gaps are filled from the page
itself: the page title stands in for a missing company name, and emails
and phone numbers fall back to regex matches over the content.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..config import config
from ..models import OperationType
from .llm import LLMClient, LLMError
from .usage import UsageTracker

if TYPE_CHECKING:
    from ..context import StageContext

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 15000
TRUNCATION_MARKER = "\n\n[Content truncated...]"

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_PATTERN = re.compile(r"(?:\+55\s?)?(?:\(?\d{2}\)?\s?)?(?:9?\d{4}[-.\s]?\d{4})")

EXTRACTOR_INSTRUCTION = """You are a data extraction specialist. Your task is to extract structured contact information from website content.

Given website content in markdown format, extract the following information:

1. **Company**: The official company/business name
2. **Contact**: Name of a contact person (preferably the owner, manager, or key decision maker)
3. **ContactRole**: The role/position of the contact person (e.g., "CEO", "Diretor", "Gerente")
4. **Emails**: All email addresses found (list the primary/contact email first)
5. **Phones**: All phone numbers found (list the primary/contact number first)
6. **Address**: Physical address if available
7. **Website**: The canonical website URL
8. **SocialMedia**: Social media profile URLs (LinkedIn, Facebook, Instagram, Twitter, etc.)

IMPORTANT RULES:
- Extract ONLY information that is explicitly present in the content
- Do NOT invent or guess information
- If information is not found, leave the field empty
- For emails and phones, extract ALL that you find
- Prefer Brazilian formats for phones (e.g., +55 81 99999-9999)
- For social media, extract the full URL

OUTPUT FORMAT:
Respond with ONLY a valid JSON object in this exact format (no markdown, no code blocks, no explanations):
{
  "company": "Company Name",
  "contact": "Contact Person Name",
  "contact_role": "Role/Position",
  "emails": ["email1@example.com"],
  "phones": ["+55 11 99999-9999"],
  "address": "Full address if available",
  "website": "https://www.example.com",
  "social_media": {"linkedin": "https://linkedin.com/company/example"}
}

If no information can be extracted, respond with:
{"company": "", "contact": "", "contact_role": "", "emails": [], "phones": [], "address": "", "website": "", "social_media": {}}"""


class ExtractionError(Exception):
    """Raised when structured data cannot be extracted."""

    pass


@dataclass
class ExtractedData:
    """Contact fields extracted from a company website.

    Attributes:
        url: Page the data came from.
        company: Company name.
        contact: Contact person.
        contact_role: Contact person's role.
        emails: Email addresses, primary first.
        phones: Phone numbers, primary first.
        address: Postal address.
        website: Canonical website URL.
        social_media: Network name to profile URL.
        model: Model that produced the extraction.
    """

    url: str = ""
    company: str = ""
    contact: str = ""
    contact_role: str = ""
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    address: str = ""
    website: str = ""
    social_media: dict[str, str] = field(default_factory=dict)
    model: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "company": self.company,
            "contact": self.contact,
            "contact_role": self.contact_role,
            "emails": self.emails,
            "phones": self.phones,
            "address": self.address,
            "website": self.website,
            "social_media": self.social_media,
        }


def truncate_content(content: str, limit: int = MAX_CONTENT_CHARS) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + TRUNCATION_MARKER


def clean_json_response(response: str) -> str:
    """Strip markdown code fences around a JSON answer."""
    text = response.strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text.strip()


def extract_emails_from_text(text: str) -> list[str]:
    """Find email addresses, deduplicated case-insensitively in first-seen order."""
    seen: set[str] = set()
    emails = []
    for match in EMAIL_PATTERN.findall(text):
        key = match.lower()
        if key not in seen:
            seen.add(key)
            emails.append(match)
    return emails


def extract_phones_from_text(text: str) -> list[str]:
    """Find phone numbers with at least 8 digits, deduplicated by digits."""
    seen: set[str] = set()
    phones = []
    for match in PHONE_PATTERN.findall(text):
        digits = re.sub(r"\D", "", match)
        if len(digits) >= 8 and digits not in seen:
            seen.add(digits)
            phones.append(match.strip())
    return phones


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def parse_extraction_response(response: str) -> dict[str, Any]:
    """Parse the model's answer into a dict.

    Raises:
        ExtractionError: If no JSON object can be found or decoded.
    """
    text = clean_json_response(response)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ExtractionError("no JSON object in model response")
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"invalid JSON in model response: {e}") from e
    if not isinstance(parsed, dict):
        raise ExtractionError("model response is not a JSON object")
    return parsed


class DataExtractor:
    """Extracts contact data from scraped markdown with an LLM.

    Args:
        llm: Chat-completion client.
        usage: Usage tracker for metering.
        timeout_seconds: Deadline per extraction call.
    """

    def __init__(
        self,
        llm: LLMClient,
        usage: Optional[UsageTracker] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.llm = llm
        self.usage = usage or UsageTracker()
        self.timeout_seconds = timeout_seconds or config.EXTRACTION_TIMEOUT_SECONDS

    def build_prompt(self, url: str, title: str, content: str) -> str:
        return (
            "Extract contact information from the following website content.\n\n"
            f"Website URL: {url}\n"
            f"Website Title: {title}\n\n"
            "---\n"
            "CONTENT:\n"
            f"{truncate_content(content)}\n"
            "---\n\n"
            "Extract all contact information and respond with ONLY a JSON object."
        )

    async def extract(
        self,
        url: str,
        content: str,
        title: str = "",
        context: Optional["StageContext"] = None,
        lead_id: Optional[str] = None,
    ) -> ExtractedData:
        """Extract contact fields from page content.

        Args:
            url: Page URL.
            content: Scraped markdown.
            title: Page title or company name, used when the model finds none.
            context: Task context for usage attribution.
            lead_id: Lead the call is made for.

        Returns:
            ExtractedData with regex fallbacks applied.

        Raises:
            ExtractionError: If there is no content or the model fails.
        """
        if not content or not content.strip():
            raise ExtractionError("no scraped content available")

        prompt = self.build_prompt(url, title, content)
        started_at = time.monotonic()
        model = self.llm.model
        try:
            response = await self.llm.complete(
                EXTRACTOR_INSTRUCTION,
                prompt,
                timeout=self.timeout_seconds,
                temperature=0.0,
                json_mode=True,
            )
            model = response.model
            parsed = parse_extraction_response(response.text)
        except (LLMError, ExtractionError) as e:
            await self.usage.track(
                context, OperationType.DATA_EXTRACTION, model, prompt, "",
                started_at, success=False, error=str(e), lead_id=lead_id,
            )
            raise ExtractionError(str(e)) from e

        await self.usage.track(
            context, OperationType.DATA_EXTRACTION, model, prompt, response.text,
            started_at, success=True, lead_id=lead_id,
        )

        social = parsed.get("social_media")
        data = ExtractedData(
            url=url,
            company=str(parsed.get("company") or "").strip(),
            contact=str(parsed.get("contact") or "").strip(),
            contact_role=str(parsed.get("contact_role") or "").strip(),
            emails=_str_list(parsed.get("emails")),
            phones=_str_list(parsed.get("phones")),
            address=str(parsed.get("address") or "").strip(),
            website=str(parsed.get("website") or "").strip() or url,
            social_media={
                str(k): str(v) for k, v in social.items() if v
            } if isinstance(social, dict) else {},
            model=model,
        )

        if not data.company and title:
            data.company = title
        if not data.emails:
            data.emails = extract_emails_from_text(content)
        if not data.phones:
            data.phones = extract_phones_from_text(content)

        logger.info(
            "Extracted data from %s: company=%r emails=%d phones=%d",
            url,
            data.company,
            len(data.emails),
            len(data.phones),
        )
        return data
