"""Firecrawl client for website scraping with markdown output.

Scrapes a company website and returns its main content as markdown, ready
for LLM extraction and briefing prompts. The synchronous SDK call runs in
the default executor and is bounded by a hard timeout.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from firecrawl import Firecrawl

from ..config import config

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT_SECONDS = 45.0
DEFAULT_FORMATS = ["markdown"]


class FirecrawlError(Exception):
    """Base exception for Firecrawl client errors."""

    pass


class FirecrawlRateLimitError(FirecrawlError):
    """Raised when API rate limit is exceeded."""

    pass


class FirecrawlAuthError(FirecrawlError):
    """Raised when API authentication fails."""

    pass


class FirecrawlScrapeError(FirecrawlError):
    """Raised when scraping a URL fails."""

    pass


class FirecrawlTimeoutError(FirecrawlError):
    """Raised when a scrape exceeds its deadline."""

    pass


class InvalidURLError(FirecrawlError):
    """Raised when the URL has no usable scheme or host."""

    pass


@dataclass
class ScrapeResult:
    """Represents the result of scraping a single URL.

    Attributes:
        url: The URL that was scraped.
        markdown: Markdown content (primary output for LLM consumption).
        metadata: Page metadata (title, description, language, ...).
        success: Whether the scrape was successful.
        error: Error message if scrape failed.
    """

    url: str
    markdown: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "url": self.url,
            "markdown": self.markdown,
            "metadata": self.metadata,
            "success": self.success,
            "error": self.error,
        }

    @property
    def has_content(self) -> bool:
        return bool(self.markdown and self.markdown.strip())

    @property
    def title(self) -> Optional[str]:
        return self.metadata.get("title")

    @property
    def word_count(self) -> int:
        """Estimate word count from markdown content."""
        if not self.markdown:
            return 0
        return len(self.markdown.split())


def normalize_url(url: str) -> str:
    """Validate a website URL, adding https:// when the scheme is missing.

    Raises:
        InvalidURLError: If no host can be found.
    """
    candidate = (url or "").strip()
    if candidate and "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if (
        parsed.scheme not in ("http", "https")
        or not parsed.netloc
        or any(ch.isspace() for ch in parsed.netloc)
    ):
        raise InvalidURLError(f"invalid URL: {url!r}")
    return candidate


def _as_dict(value: Any) -> dict[str, Any]:
    """Coerce an SDK response object (pydantic model or dict) into a dict."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    return {k: v for k, v in vars(value).items() if not k.startswith("_")}


class FirecrawlClient:
    """Client for the Firecrawl API with async support.

    Attributes:
        api_key: Firecrawl API key.
        timeout_seconds: Hard deadline for a single scrape.

    Example:
        >>> client = FirecrawlClient()
        >>> result = await client.scrape_url("https://acme.com.br")
        >>> print(result.markdown[:40])
        # Acme Contabilidade - Escritório em ...
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize Firecrawl client.

        Args:
            api_key: Firecrawl API key. Defaults to FIRECRAWL_API_KEY.
            api_url: Self-hosted API URL. Defaults to FIRECRAWL_API_URL.
            timeout_seconds: Hard deadline per scrape. Defaults to 45.

        Raises:
            ValueError: If no API key is provided or configured.
        """
        self.api_key = api_key or config.FIRECRAWL_API_KEY
        if not self.api_key:
            raise ValueError(
                "Firecrawl API key required. Set FIRECRAWL_API_KEY environment "
                "variable or pass api_key parameter."
            )

        self.timeout_seconds = timeout_seconds
        client_kwargs: dict[str, Any] = {"api_key": self.api_key}
        api_url = api_url or config.FIRECRAWL_API_URL
        if api_url:
            client_kwargs["api_url"] = api_url
        self._client = Firecrawl(**client_kwargs)
        logger.info("FirecrawlClient initialized with %.0fs timeout", timeout_seconds)

    def _parse_scrape_response(self, url: str, response: Any) -> ScrapeResult:
        """Parse a raw SDK response into a ScrapeResult."""
        data = _as_dict(response)
        metadata = _as_dict(data.get("metadata"))
        return ScrapeResult(
            url=url,
            markdown=data.get("markdown"),
            metadata=metadata,
            success=True,
            error=None,
        )

    async def scrape_url(self, url: str, only_main_content: bool = True) -> ScrapeResult:
        """Scrape a single URL and return its markdown.

        Args:
            url: The URL to scrape. A missing scheme defaults to https.
            only_main_content: Strip navigation, footers and similar chrome.

        Returns:
            ScrapeResult with extracted content.

        Raises:
            InvalidURLError: If the URL is not usable.
            FirecrawlTimeoutError: If the scrape exceeds the deadline.
            FirecrawlAuthError: If API authentication fails.
            FirecrawlRateLimitError: If rate limit is exceeded.
            FirecrawlScrapeError: If scraping fails or returns nothing.
        """
        target = normalize_url(url)
        logger.info("Scraping URL: %s", target)

        loop = asyncio.get_running_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: self._client.scrape(
                        target,
                        formats=DEFAULT_FORMATS.copy(),
                        only_main_content=only_main_content,
                        timeout=int(self.timeout_seconds * 1000),
                    ),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Scrape of %s timed out after %.0fs", target, self.timeout_seconds)
            raise FirecrawlTimeoutError("scrape timeout exceeded") from e
        except Exception as e:
            error_msg = str(e)
            logger.error("Failed to scrape %s: %s", target, error_msg)

            # Categorize errors
            if "401" in error_msg or "unauthorized" in error_msg.lower():
                raise FirecrawlAuthError(f"Authentication failed: {error_msg}") from e
            elif "429" in error_msg or "rate limit" in error_msg.lower():
                raise FirecrawlRateLimitError(f"Rate limit exceeded: {error_msg}") from e
            else:
                raise FirecrawlScrapeError(f"Scrape failed for {target}: {error_msg}") from e

        if not response:
            raise FirecrawlScrapeError(f"Empty response from Firecrawl for {target}")

        result = self._parse_scrape_response(target, response)
        if not result.has_content:
            raise FirecrawlScrapeError(f"No content scraped from {target}")

        logger.info(
            "Successfully scraped %s: %d words in markdown",
            target,
            result.word_count,
        )
        return result

    async def scrape_url_safe(self, url: str, **kwargs: Any) -> ScrapeResult:
        """Scrape a URL, returning a failed ScrapeResult instead of raising."""
        try:
            return await self.scrape_url(url, **kwargs)
        except FirecrawlError as e:
            logger.warning("Safe scrape failed for %s: %s", url, e)
            return ScrapeResult(url=url, success=False, error=str(e))
