"""Stage adapters for the automation pipeline.

Scraping (Firecrawl), structured extraction, briefing and email generation
(OpenAI chat completions) and usage accounting. Client classes are loaded
lazily so that importing the package does not pull in the SDKs.
"""

import importlib
from typing import TYPE_CHECKING

_LAZY_ATTRS = {
    "FirecrawlClient": ".firecrawl",
    "LLMClient": ".llm",
    "DataExtractor": ".extractor",
    "BriefingGenerator": ".briefing",
    "EmailGenerator": ".email_writer",
    "UsageTracker": ".usage",
}

# For type checking, use actual imports
if TYPE_CHECKING:
    from .firecrawl import FirecrawlClient
    from .llm import LLMClient
    from .extractor import DataExtractor
    from .briefing import BriefingGenerator
    from .email_writer import EmailGenerator
    from .usage import UsageTracker


def __getattr__(name: str):
    """Module-level __getattr__ for lazy imports."""
    module_name = _LAZY_ATTRS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = importlib.import_module(module_name, __name__)
    return getattr(module, name)


__all__ = list(_LAZY_ATTRS)
