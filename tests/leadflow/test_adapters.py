"""Tests for the scraping and chat-completion adapters.

The Firecrawl and OpenAI SDK clients are patched out; no network calls
are made.
"""

import asyncio
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from leadflow.integrations.firecrawl import (
    FirecrawlAuthError,
    FirecrawlClient,
    FirecrawlRateLimitError,
    FirecrawlScrapeError,
    FirecrawlTimeoutError,
    InvalidURLError,
    ScrapeResult,
    normalize_url,
)
from leadflow.integrations.llm import (
    LLMClient,
    LLMError,
    LLMQuotaError,
    LLMResponseError,
    RateLimiter,
    get_rate_limiter,
    is_quota_error,
)


def completion(text: str) -> MagicMock:
    return MagicMock(choices=[MagicMock(message=MagicMock(content=text))])


# ============================================================================
# Firecrawl
# ============================================================================


class TestNormalizeUrl:
    """Tests for website URL validation."""

    def test_adds_https_scheme(self):
        """Test that a bare host gets https://."""
        assert normalize_url("padariacentral.com.br") == "https://padariacentral.com.br"

    def test_keeps_http_scheme(self):
        assert normalize_url("http://example.com/about") == "http://example.com/about"

    @pytest.mark.parametrize("url", ["", "   ", "ftp://example.com", "https://"])
    def test_rejects_unusable_urls(self, url):
        """Test that URLs without an http(s) host are rejected."""
        with pytest.raises(InvalidURLError, match="invalid URL"):
            normalize_url(url)


class TestScrapeResult:
    """Tests for the scrape result record."""

    def test_content_properties(self):
        """Test has_content, title and word_count."""
        result = ScrapeResult(
            url="https://example.com",
            markdown="one two three",
            metadata={"title": "Example"},
        )

        assert result.has_content is True
        assert result.title == "Example"
        assert result.word_count == 3

    def test_blank_markdown_has_no_content(self):
        assert ScrapeResult(url="https://example.com", markdown="  \n").has_content is False


class TestFirecrawlClient:
    """Tests for FirecrawlClient with the SDK mocked."""

    def test_requires_api_key(self):
        """Test that a missing key fails fast."""
        with patch("leadflow.integrations.firecrawl.config") as mock_config:
            mock_config.FIRECRAWL_API_KEY = ""
            with pytest.raises(ValueError, match="API key required"):
                FirecrawlClient()

    @pytest.mark.asyncio
    async def test_scrape_returns_markdown(self):
        """Test a successful scrape with a dict response."""
        with patch("leadflow.integrations.firecrawl.Firecrawl") as sdk:
            sdk.return_value.scrape.return_value = {
                "markdown": "# Padaria Central\n\nPães artesanais",
                "metadata": {"title": "Padaria Central"},
            }
            client = FirecrawlClient(api_key="fc-test", timeout_seconds=5)

            result = await client.scrape_url("padariacentral.com.br")

        assert result.url == "https://padariacentral.com.br"
        assert result.title == "Padaria Central"
        assert "Pães artesanais" in result.markdown
        call = sdk.return_value.scrape.call_args
        assert call.args[0] == "https://padariacentral.com.br"
        assert call.kwargs["formats"] == ["markdown"]
        assert call.kwargs["only_main_content"] is True

    @pytest.mark.asyncio
    async def test_empty_content_is_an_error(self):
        """Test that a page without markdown raises FirecrawlScrapeError."""
        with patch("leadflow.integrations.firecrawl.Firecrawl") as sdk:
            sdk.return_value.scrape.return_value = {"markdown": "", "metadata": {}}
            client = FirecrawlClient(api_key="fc-test")

            with pytest.raises(FirecrawlScrapeError, match="No content"):
                await client.scrape_url("https://example.com")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,error",
        [
            ("HTTP 401 Unauthorized", FirecrawlAuthError),
            ("429 Too Many Requests", FirecrawlRateLimitError),
            ("500 upstream failure", FirecrawlScrapeError),
        ],
    )
    async def test_errors_are_categorized(self, message, error):
        """Test mapping of SDK failures to typed errors."""
        with patch("leadflow.integrations.firecrawl.Firecrawl") as sdk:
            sdk.return_value.scrape.side_effect = Exception(message)
            client = FirecrawlClient(api_key="fc-test")

            with pytest.raises(error):
                await client.scrape_url("https://example.com")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a scrape exceeding the deadline raises FirecrawlTimeoutError."""
        with patch("leadflow.integrations.firecrawl.Firecrawl"):
            client = FirecrawlClient(api_key="fc-test", timeout_seconds=5)

        with patch(
            "leadflow.integrations.firecrawl.asyncio.wait_for",
            side_effect=asyncio.TimeoutError,
        ):
            with pytest.raises(FirecrawlTimeoutError, match="scrape timeout exceeded"):
                await client.scrape_url("https://example.com")

    @pytest.mark.asyncio
    async def test_safe_scrape_never_raises(self):
        """Test that scrape_url_safe returns a failed result on error."""
        with patch("leadflow.integrations.firecrawl.Firecrawl") as sdk:
            sdk.return_value.scrape.side_effect = Exception("boom")
            client = FirecrawlClient(api_key="fc-test")

            result = await client.scrape_url_safe("https://example.com")

        assert result.success is False
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_safe_scrape_invalid_url(self):
        with patch("leadflow.integrations.firecrawl.Firecrawl"):
            client = FirecrawlClient(api_key="fc-test")

        result = await client.scrape_url_safe("not a url")

        assert result.success is False


# ============================================================================
# LLM client
# ============================================================================


class TestIsQuotaError:
    """Tests for quota error classification."""

    @pytest.mark.parametrize(
        "message",
        ["Error code: 429", "RESOURCE_EXHAUSTED", "You exceeded your current quota"],
    )
    def test_quota_messages(self, message):
        assert is_quota_error(Exception(message)) is True

    def test_other_errors(self):
        assert is_quota_error(Exception("connection reset")) is False
        assert is_quota_error(None) is False


class TestLLMClient:
    """Tests for LLMClient with the OpenAI SDK mocked."""

    @pytest.mark.asyncio
    async def test_complete_returns_text_and_model(self):
        """Test a successful completion."""
        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            create = sdk.return_value.chat.completions.create
            create.return_value = completion("olá")
            client = LLMClient(api_key="sk-test", model="gpt-4o-mini", fallback_model="gpt-4o")

            response = await client.complete("system", "prompt", timeout=5, json_mode=True)

        assert response.text == "olá"
        assert response.model == "gpt-4o-mini"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_quota_error_falls_back_once(self):
        """Test that a quota error on the primary model retries on the fallback."""
        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            create = sdk.return_value.chat.completions.create
            create.side_effect = [Exception("Error code: 429 - quota"), completion("ok")]
            client = LLMClient(api_key="sk-test", model="gpt-4o-mini", fallback_model="gpt-4o")

            response = await client.complete("system", "prompt", timeout=5)

        assert response.model == "gpt-4o"
        assert [c.kwargs["model"] for c in create.call_args_list] == ["gpt-4o-mini", "gpt-4o"]

    @pytest.mark.asyncio
    async def test_quota_on_both_models_raises(self):
        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            sdk.return_value.chat.completions.create.side_effect = Exception("429")
            client = LLMClient(api_key="sk-test", model="gpt-4o-mini", fallback_model="gpt-4o")

            with pytest.raises(LLMQuotaError):
                await client.complete("system", "prompt", timeout=5)

    @pytest.mark.asyncio
    async def test_other_errors_do_not_fall_back(self):
        """Test that non-quota failures are raised without a fallback call."""
        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            create = sdk.return_value.chat.completions.create
            create.side_effect = Exception("invalid request")
            client = LLMClient(api_key="sk-test")

            with pytest.raises(LLMError):
                await client.complete("system", "prompt", timeout=5)

        assert create.call_count == 1

    @pytest.mark.asyncio
    async def test_empty_response(self):
        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            sdk.return_value.chat.completions.create.return_value = completion("   ")
            client = LLMClient(api_key="sk-test")

            with pytest.raises(LLMResponseError):
                await client.complete("system", "prompt", timeout=5)


class TestRateLimiter:
    """Tests for the shared completion limiter."""

    @pytest.mark.asyncio
    async def test_caps_completions_in_flight(self):
        """Test that concurrent completions never exceed the slot count."""
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def slow_create(**kwargs):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return completion("ok")

        with patch("leadflow.integrations.llm.OpenAI") as sdk:
            sdk.return_value.chat.completions.create.side_effect = slow_create
            client = LLMClient(api_key="sk-test", rate_limiter=RateLimiter(2))

            responses = await asyncio.gather(
                *(client.complete("system", "prompt", timeout=5) for _ in range(6))
            )

        assert len(responses) == 6
        assert state["peak"] == 2
        assert client.rate_limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_spaces_request_starts(self):
        """Test the minimum delay between consecutive request starts."""
        limiter = RateLimiter(5, min_delay=0.05)
        loop = asyncio.get_running_loop()
        starts = []

        async def request():
            async with limiter.slot():
                starts.append(loop.time())

        await asyncio.gather(request(), request(), request())

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.04 for gap in gaps)

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        limiter = RateLimiter(1)

        with pytest.raises(RuntimeError):
            async with limiter.slot():
                raise RuntimeError("boom")

        async with limiter.slot():
            assert limiter.in_flight == 1
        assert limiter.in_flight == 0

    def test_rejects_zero_slots(self):
        with pytest.raises(ValueError):
            RateLimiter(0)

    def test_clients_share_process_limiter(self):
        with patch("leadflow.integrations.llm.OpenAI"):
            first = LLMClient(api_key="sk-test")
            second = LLMClient(api_key="sk-test")

        assert first.rate_limiter is second.rate_limiter is get_rate_limiter()
