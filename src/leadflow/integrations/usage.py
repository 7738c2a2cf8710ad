"""Usage accounting for LLM calls.

Token counts are estimated from text length and priced from a per-model
table. One ``usage_metrics`` row is written per call, attributed through
the caller's ``StageContext``.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..models import OperationType, UsageMetric

if TYPE_CHECKING:
    from ..context import StageContext
    from ..store import LeadStore

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class TokenPricing:
    """USD price per million tokens."""

    input_per_mtok: float
    output_per_mtok: float


DEFAULT_TOKEN_PRICING: dict[str, TokenPricing] = {
    "gpt-4o-mini": TokenPricing(0.15, 0.60),
    "gpt-4o": TokenPricing(2.50, 10.00),
    "gpt-4.1": TokenPricing(2.00, 8.00),
    "gpt-4.1-mini": TokenPricing(0.40, 1.60),
    "gpt-4.1-nano": TokenPricing(0.10, 0.40),
}


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate tokens as ceil(len / 4)."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class UsageTracker:
    """Records metered LLM calls through the lead store.

    Args:
        store: Store used to persist metrics. Tracking is skipped when None.
        pricing: Model price table. Unknown models use the default model's price.
    """

    def __init__(
        self,
        store: Optional["LeadStore"] = None,
        pricing: Optional[dict[str, TokenPricing]] = None,
    ) -> None:
        self.store = store
        self.pricing = pricing or DEFAULT_TOKEN_PRICING

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self.pricing.get(model) or self.pricing[DEFAULT_PRICING_MODEL]
        return (
            input_tokens * pricing.input_per_mtok / 1_000_000
            + output_tokens * pricing.output_per_mtok / 1_000_000
        )

    def build_metric(
        self,
        context: "StageContext",
        operation: OperationType,
        model: str,
        input_text: str,
        output_text: str,
        started_at: float,
        success: bool,
        error: Optional[str] = None,
        lead_id: Optional[str] = None,
    ) -> UsageMetric:
        """Build a metric row. ``started_at`` is a ``time.monotonic()`` reading."""
        input_tokens = estimate_tokens(input_text)
        output_tokens = estimate_tokens(output_text)
        return UsageMetric(
            user_id=context.user_id,
            job_id=context.task_id,
            lead_id=lead_id,
            operation_type=operation.value,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost_usd=self.calculate_cost(model, input_tokens, output_tokens),
            duration_ms=int((time.monotonic() - started_at) * 1000),
            success=success,
            error_message=error,
        )

    async def track(
        self,
        context: Optional["StageContext"],
        operation: OperationType,
        model: str,
        input_text: str,
        output_text: str,
        started_at: float,
        success: bool,
        error: Optional[str] = None,
        lead_id: Optional[str] = None,
    ) -> None:
        """Persist one metric. Failures are logged, never raised."""
        if self.store is None or context is None:
            return

        metric = self.build_metric(
            context,
            operation,
            model,
            input_text,
            output_text,
            started_at,
            success,
            error=error,
            lead_id=lead_id,
        )
        try:
            await self.store.insert_usage_metric(metric)
        except Exception as e:
            logger.warning(
                "Failed to record usage metric (%s, %s): %s", operation.value, model, e
            )
            return

        logger.debug(
            "Usage tracked: %s %s tokens=%d cost=$%.6f",
            operation.value,
            model,
            metric.total_tokens,
            metric.estimated_cost_usd,
        )
