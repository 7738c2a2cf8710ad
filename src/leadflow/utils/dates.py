"""Date range parsing for usage reports."""

from datetime import date, datetime, time

DATE_ONLY_LENGTH = len("YYYY-MM-DD")


def parse_report_date(value: str, end_of_day: bool = False) -> datetime:
    """Parse an RFC 3339 timestamp or a plain ``YYYY-MM-DD`` date.

    A plain date means the start of that UTC day, or its last instant when
    ``end_of_day`` is set, so ``end_date=2026-10-01`` includes all of the
    first of October.

    Raises:
        ValueError: If the value is neither form.
    """
    value = value.strip()
    if len(value) == DATE_ONLY_LENGTH:
        day = date.fromisoformat(value)
        return datetime.combine(day, time.max if end_of_day else time.min)

    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)
