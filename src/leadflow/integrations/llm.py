"""Chat-completion client shared by the extraction and generation adapters.

Wraps the OpenAI SDK (any OpenAI-compatible endpoint through
``OPENAI_BASE_URL``). Each call carries its own timeout, and a quota or
rate-limit failure on the primary model is retried once on the fallback
model.

All clients in the process share one RateLimiter, so concurrent leads never
have more than LLM_MAX_CONCURRENT completions in flight.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import openai
from openai import OpenAI

from ..config import config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0


class LLMError(Exception):
    """Base exception for chat-completion failures."""

    pass


class LLMQuotaError(LLMError):
    """Raised when the provider reports quota exhaustion or rate limiting."""

    pass


class LLMTimeoutError(LLMError):
    """Raised when a completion exceeds its deadline."""

    pass


class LLMResponseError(LLMError):
    """Raised when the provider returns no usable text."""

    pass


def is_quota_error(error: Optional[BaseException]) -> bool:
    """Check whether an error signals quota exhaustion or rate limiting."""
    if error is None:
        return False
    if isinstance(error, (LLMQuotaError, openai.RateLimitError)):
        return True
    message = str(error)
    return (
        "429" in message
        or "RESOURCE_EXHAUSTED" in message
        or "quota" in message.lower()
    )


class RateLimiter:
    """Caps completions in flight and spaces out their start times.

    The asyncio primitives are created for the running event loop on first
    use and rebuilt if a later call runs on a different loop.

    Args:
        max_concurrent: Completions allowed in flight at once.
        min_delay: Minimum seconds between two request starts.
    """

    def __init__(self, max_concurrent: int, min_delay: float = 0.0) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.min_delay = max(min_delay, 0.0)
        self.in_flight = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._lock: Optional[asyncio.Lock] = None
        self._last_start: Optional[float] = None

    def _bind(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._loop is loop:
            return
        self._loop = loop
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._lock = asyncio.Lock()
        self._last_start = None
        self.in_flight = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one request slot for the duration of the block."""
        loop = asyncio.get_running_loop()
        self._bind(loop)
        async with self._semaphore:
            async with self._lock:
                if self.min_delay and self._last_start is not None:
                    wait = self._last_start + self.min_delay - loop.time()
                    if wait > 0:
                        await asyncio.sleep(wait)
                self._last_start = loop.time()
            self.in_flight += 1
            try:
                yield
            finally:
                self.in_flight -= 1


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter sized from LLM_MAX_CONCURRENT and LLM_MIN_DELAY_MS."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            max(config.LLM_MAX_CONCURRENT, 1),
            config.LLM_MIN_DELAY_MS / 1000,
        )
        logger.info(
            "LLM rate limiter initialized (max_concurrent=%d, min_delay_ms=%d)",
            _rate_limiter.max_concurrent,
            config.LLM_MIN_DELAY_MS,
        )
    return _rate_limiter


@dataclass
class LLMResponse:
    """Text returned by a completion and the model that produced it."""

    text: str
    model: str


class LLMClient:
    """Thin async wrapper over ``chat.completions.create``.

    Attributes:
        model: Primary model name.
        fallback_model: Model used once when the primary hits a quota error.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key. Defaults to OPENAI_API_KEY.
            base_url: Optional OpenAI-compatible endpoint. Defaults to OPENAI_BASE_URL.
            model: Primary model. Defaults to OPENAI_MODEL.
            fallback_model: Quota fallback model. Defaults to OPENAI_FALLBACK_MODEL.
            rate_limiter: Limiter to use instead of the process-wide one.

        Raises:
            ValueError: If no API key is provided or configured.
        """
        self.api_key = api_key or config.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment "
                "variable or pass api_key parameter."
            )

        self.model = model or config.OPENAI_MODEL
        self.fallback_model = fallback_model or config.OPENAI_FALLBACK_MODEL
        self.rate_limiter = rate_limiter or get_rate_limiter()

        client_kwargs: dict[str, Any] = {"api_key": self.api_key, "max_retries": 0}
        base_url = base_url or config.OPENAI_BASE_URL
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = OpenAI(**client_kwargs)
        logger.info(
            "LLMClient initialized (model=%s, fallback=%s)", self.model, self.fallback_model
        )

    async def _create(
        self,
        model: str,
        messages: list[dict[str, str]],
        timeout: float,
        temperature: float,
        json_mode: bool,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "timeout": timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        loop = asyncio.get_running_loop()
        try:
            async with self.rate_limiter.slot():
                completion = await asyncio.wait_for(
                    loop.run_in_executor(
                        None,
                        lambda: self._client.chat.completions.create(**kwargs),
                    ),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, openai.APITimeoutError) as e:
            raise LLMTimeoutError(f"{model} timed out after {timeout:.0f}s") from e
        except Exception as e:
            if is_quota_error(e):
                raise LLMQuotaError(f"{model} quota exceeded: {e}") from e
            raise LLMError(f"{model} request failed: {e}") from e

        if not completion.choices:
            raise LLMResponseError(f"{model} returned no choices")
        text = completion.choices[0].message.content or ""
        if not text.strip():
            raise LLMResponseError(f"{model} returned an empty response")
        return text

    async def complete(
        self,
        system: str,
        prompt: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        temperature: float = 0.4,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Run one chat completion.

        Args:
            system: System instruction.
            prompt: User message.
            timeout: Deadline in seconds for each model attempt.
            temperature: Sampling temperature.
            json_mode: Ask the provider for a JSON object response.

        Returns:
            LLMResponse with the text and the model that produced it.

        Raises:
            LLMQuotaError: If both models report quota exhaustion.
            LLMTimeoutError: If the call times out.
            LLMError: For any other provider failure.
        """
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

        try:
            text = await self._create(self.model, messages, timeout, temperature, json_mode)
            return LLMResponse(text=text, model=self.model)
        except LLMQuotaError as e:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning(
                "Quota exceeded on %s, falling back to %s: %s",
                self.model,
                self.fallback_model,
                e,
            )

        text = await self._create(
            self.fallback_model, messages, timeout, temperature, json_mode
        )
        return LLMResponse(text=text, model=self.fallback_model)
