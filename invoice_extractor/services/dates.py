"""
Date normalization to ISO ``YYYY-MM-DD``.

Invoices print dates in whatever format the vendor likes
("January 15, 2022", "15 Jan 2022", "01/15/2022"). Both the normalizer
and the reconciler need them in one canonical form before storing or
comparing them.
"""

import re
from datetime import date, datetime

from dateutil import parser as date_parser
from loguru import logger

ISO_DATE = "%Y-%m-%d"

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

# Values models emit when a date is not on the invoice
_PLACEHOLDERS = {"n/a", "na", "none", "null", "unknown", "not found", "-"}


def normalize_date(value) -> str | None:
    """
    Normalize a date-like value to ``YYYY-MM-DD``.

    Args:
        value: str, date or datetime (anything else is treated as absent)

    Returns:
        ISO date string, or None when the value is empty or unparseable.
        Never raises.
    """
    if isinstance(value, date):
        return value.strftime(ISO_DATE)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text or text.lower() in _PLACEHOLDERS:
        return None

    # ISO dates and timestamps: take the calendar date as written
    if _ISO_PREFIX.match(text):
        try:
            return datetime.strptime(text[:10], ISO_DATE).strftime(ISO_DATE)
        except ValueError:
            pass

    # Two different defaults expose components dateutil had to invent
    # ("March 2022" has no day), which would make the result depend on today
    try:
        first = date_parser.parse(text, default=datetime(2000, 1, 1))
        second = date_parser.parse(text, default=datetime(2001, 2, 2))
    except (ValueError, OverflowError, TypeError):
        logger.debug("Unparseable date", value=text)
        return None

    if first.date() != second.date():
        logger.debug("Incomplete date", value=text)
        return None

    return first.strftime(ISO_DATE)
