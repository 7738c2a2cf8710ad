"""Prompt-facing helpers (language detection, registry content) and report date parsing."""

from .dates import parse_report_date
from .extra_data import LeadExtraData, build_content_from_extra_data
from .language import LANG_ENGLISH, LANG_PORTUGUESE, detect_language

__all__ = [
    "parse_report_date",
    "LeadExtraData",
    "build_content_from_extra_data",
    "LANG_ENGLISH",
    "LANG_PORTUGUESE",
    "detect_language",
]
