"""Lead automation worker.

Turns raw leads into sales-ready records: scrapes company websites, extracts
contact data with an LLM, writes pre-call briefings and drafts cold emails,
driven by automation tasks delivered over webhooks.
"""

__version__ = "0.1.0"
