"""Single-lead stage executors.

Each executor takes one lead id plus the task's ``StageContext`` and
returns an ``EnrichmentResult``. Executors never raise: every failure,
whether upstream, persistence or precondition, is folded into the result's
``success`` flag and ``error`` text so a batch can always run to the end.

Stages:
    enrich  scrape the website (retried), extract contact data, write it back
    brief   generate and store a pre-call briefing (skipped if one exists)
    email   draft and store a cold email (skipped if one exists)
    full    enrich, then brief, then email, regardless of earlier outcomes
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .config import config
from .context import StageContext
from .integrations.briefing import BriefingGenerator
from .integrations.email_writer import EmailGenerator
from .integrations.extractor import DataExtractor
from .integrations.firecrawl import FirecrawlClient, InvalidURLError, normalize_url
from .models import ColdEmail, EmailStatus, LeadStatus
from .store import LeadStore
from .utils.extra_data import build_content_from_extra_data

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class EnrichmentResult:
    """Outcome of running one stage (or the full pipeline) for one lead.

    Attributes:
        lead_id: Lead that was processed.
        success: Whether the lead counts as done for this task.
        error: Human-readable failure reason.
        enriched: Contact data was extracted and written back.
        briefed: A briefing exists for the lead.
        emailed: An email draft exists for the lead.
    """

    lead_id: str
    success: bool = False
    error: Optional[str] = None
    enriched: bool = False
    briefed: bool = False
    emailed: bool = False

    def fail(self, error: str) -> "EnrichmentResult":
        self.success = False
        self.error = error
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "success": self.success,
            "error": self.error,
            "enriched": self.enriched,
            "briefed": self.briefed,
            "emailed": self.emailed,
        }


async def retry_stage(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    delay: float = 5.0,
) -> T:
    """Run a stage operation with a fixed-delay retry.

    The operation is attempted up to ``max_retries + 1`` times with a
    constant ``delay`` between attempts. Every error type is retried the
    same way.

    Args:
        operation: Zero-argument coroutine factory.
        max_retries: Retries after the first attempt.
        delay: Seconds to sleep between attempts.

    Returns:
        The first successful result.

    Raises:
        The last exception if every attempt fails.
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == attempts:
                logger.error("All %d attempts failed. Last error: %s", attempts, e)
                raise
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt,
                attempts,
                e,
                delay,
            )
            await asyncio.sleep(delay)
    raise RuntimeError("Unexpected retry loop exit")


class StageExecutors:
    """Composes stage adapters, the retry wrapper and the store per lead.

    Adapters are optional; a missing adapter fails the stages that need
    it with a "not configured" error instead of disabling the service.

    Args:
        store: Lead store façade.
        scraper: Website scraper.
        extractor: Contact data extractor.
        briefing: Briefing generator.
        email_writer: Email generator.
        max_retries: Retry budget used when the task sets none. Defaults to
            STAGE_MAX_RETRIES.
        retry_delay: Seconds between attempts. Defaults to STAGE_RETRY_DELAY_SECONDS.
    """

    def __init__(
        self,
        store: LeadStore,
        scraper: Optional[FirecrawlClient] = None,
        extractor: Optional[DataExtractor] = None,
        briefing: Optional[BriefingGenerator] = None,
        email_writer: Optional[EmailGenerator] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        self.store = store
        self.scraper = scraper
        self.extractor = extractor
        self.briefing = briefing
        self.email_writer = email_writer
        self.max_retries = config.STAGE_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = (
            config.STAGE_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        )

    async def _retry(
        self, operation: Callable[[], Awaitable[T]], context: StageContext
    ) -> T:
        max_retries = self.max_retries if context.max_retries is None else context.max_retries
        return await retry_stage(operation, max_retries, self.retry_delay)

    # =========================================================================
    # Enrich
    # =========================================================================

    async def enrich(self, lead_id: str, context: StageContext) -> EnrichmentResult:
        """Scrape the lead's website, extract contact data and store it."""
        result, _ = await self._enrich(lead_id, context)
        return result

    async def _enrich(
        self, lead_id: str, context: StageContext
    ) -> tuple[EnrichmentResult, str]:
        """Run enrichment and also return the scraped markdown ("" if none)."""
        result = EnrichmentResult(lead_id=lead_id)

        try:
            lead = await self.store.get_lead(lead_id)
        except Exception as e:
            return result.fail(f"failed to get lead: {e}"), ""

        if not lead.website:
            return result.fail("lead has no website"), ""
        if self.scraper is None:
            return result.fail("website scraping not configured"), ""
        if self.extractor is None:
            return result.fail("data extraction not configured"), ""

        try:
            url = normalize_url(lead.website)
        except InvalidURLError as e:
            return result.fail(f"lead has an invalid website: {e}"), ""

        try:
            page = await self._retry(lambda: self.scraper.scrape_url(url), context)
        except Exception as e:
            return result.fail(f"failed to scrape website: {e}"), ""

        content = page.markdown or ""
        try:
            data = await self.extractor.extract(
                page.url,
                content,
                title=lead.company_name,
                context=context,
                lead_id=lead_id,
            )
        except Exception as e:
            return result.fail(f"failed to extract data: {e}"), content

        try:
            await self.store.update_lead_enrichment(lead_id, data)
        except Exception as e:
            return result.fail(f"failed to update lead: {e}"), content

        result.success = True
        result.enriched = True
        logger.info(
            "Lead enriched",
            extra={
                "lead_id": lead_id,
                "task_id": context.task_id,
                "emails": len(data.emails),
                "phones": len(data.phones),
            },
        )
        return result, content

    # =========================================================================
    # Brief
    # =========================================================================

    async def brief(
        self,
        lead_id: str,
        context: StageContext,
        content: Optional[str] = None,
    ) -> EnrichmentResult:
        """Generate and store a pre-call briefing.

        Args:
            lead_id: Lead to brief.
            context: Task context.
            content: Already-scraped website markdown. When None the website
                is scraped once (no retry); when empty or the scrape fails,
                the lead's registry data is used instead.
        """
        result = EnrichmentResult(lead_id=lead_id)

        try:
            already_briefed = await self.store.lead_has_pre_call_report(lead_id)
        except Exception as e:
            logger.warning("Could not check existing pre-call for lead %s: %s", lead_id, e)
            already_briefed = False
        if already_briefed:
            logger.info("Lead %s already has a pre-call report - skipping", lead_id)
            result.success = True
            result.briefed = True
            return result

        if self.briefing is None:
            return result.fail("briefing generation not configured")

        try:
            lead = await self.store.get_lead(lead_id)
        except Exception as e:
            return result.fail(f"failed to get lead: {e}")

        if content is None:
            content = ""
            if lead.website and self.scraper is not None:
                page = await self.scraper.scrape_url_safe(lead.website)
                if page.success:
                    content = page.markdown or ""
        if not content:
            content = build_content_from_extra_data(lead)
            if content:
                logger.info("Using registry data as briefing content for lead %s", lead_id)

        try:
            report = await self._retry(
                lambda: self.briefing.generate(lead, content, context=context),
                context,
            )
        except Exception as e:
            return result.fail(f"failed to generate pre-call: {e}")

        try:
            await self.store.insert_pre_call_report(lead_id, report)
        except Exception as e:
            return result.fail(f"failed to save pre-call: {e}")

        result.success = True
        result.briefed = True
        return result

    # =========================================================================
    # Email
    # =========================================================================

    async def email(self, lead_id: str, context: StageContext) -> EnrichmentResult:
        """Draft and store a cold email, grounded on the briefing if one exists."""
        result = EnrichmentResult(lead_id=lead_id)

        try:
            already_emailed = await self.store.lead_has_email(lead_id)
        except Exception as e:
            logger.warning("Could not check existing email for lead %s: %s", lead_id, e)
            already_emailed = False
        if already_emailed:
            logger.info("Lead %s already has an email - skipping", lead_id)
            result.success = True
            result.emailed = True
            return result

        if self.email_writer is None:
            return result.fail("email generation not configured")

        try:
            lead = await self.store.get_lead(lead_id)
        except Exception as e:
            return result.fail(f"failed to get lead: {e}")

        try:
            report = await self.store.get_pre_call_report(lead_id) or ""
        except Exception as e:
            logger.warning("Could not load pre-call for lead %s: %s", lead_id, e)
            report = ""
        content = "" if report else build_content_from_extra_data(lead)

        try:
            generated = await self._retry(
                lambda: self.email_writer.generate(
                    lead, pre_call_report=report, content=content, context=context
                ),
                context,
            )
        except Exception as e:
            return result.fail(f"failed to generate email: {e}")

        profile = context.business_profile
        record = ColdEmail(
            lead_id=lead_id,
            subject=generated.subject,
            body=generated.body,
            status=EmailStatus.DRAFT,
            business_profile_id=profile.id if profile is not None else None,
            from_name=context.sender_name,
            to_email=lead.emails[0] if lead.emails else None,
        )
        try:
            await self.store.insert_cold_email(record)
        except Exception as e:
            return result.fail(f"failed to save email: {e}")

        try:
            await self.store.update_lead_status(lead_id, LeadStatus.EMAIL_DRAFTED.value)
        except Exception as e:
            logger.warning("Email saved but lead %s status not updated: %s", lead_id, e)

        result.success = True
        result.emailed = True
        return result

    # =========================================================================
    # Full
    # =========================================================================

    async def full(self, lead_id: str, context: StageContext) -> EnrichmentResult:
        """Enrich, brief and email one lead.

        Briefing and email run even when enrichment fails. The lead counts
        as successful when a briefing or an email exists afterwards.
        """
        enriched, content = await self._enrich(lead_id, context)
        if not enriched.success:
            logger.warning(
                "Enrichment failed for lead %s, continuing with pre-call and email: %s",
                lead_id,
                enriched.error,
            )

        briefed = await self.brief(lead_id, context, content=content or None)
        emailed = await self.email(lead_id, context)

        result = EnrichmentResult(
            lead_id=lead_id,
            enriched=enriched.enriched,
            briefed=briefed.briefed,
            emailed=emailed.emailed,
        )
        result.success = result.briefed or result.emailed
        if not result.success:
            errors = [r.error for r in (enriched, briefed, emailed) if r.error]
            result.error = "; ".join(errors) or "no stage succeeded"
        return result
