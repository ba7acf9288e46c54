"""Validation helpers for the date, title and link answers of the upload wizard."""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Optional
from urllib.parse import urlparse

from utils.errors import ValidationError

SKIP_WORD = "no"

_NON_DIGITS = re.compile(r"[^0-9]")
# Slack renders links as <https://example.com> or <https://example.com|label>
_SLACK_LINK = re.compile(r"^<([^|>]+)(\|[^>]*)?>")


def validate_date(raw: str, today: Optional[Callable[[], date]] = None) -> str:
    """Normalize a date answer to ``YYYY/MM/DD``.

    Accepts ``YYYYMMDD`` or ``MMDD`` once every non-digit is stripped, so
    ``2024/12/25`` and ``12-25`` both work. Day counts per month are not
    checked.

    Args:
        raw: User input.
        today: Optional clock used for the current year of ``MMDD`` input.

    Raises:
        ValidationError: If the input does not have one of the two shapes or
            the month/day is out of range.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == 8:
        year, month, day = digits[:4], digits[4:6], digits[6:8]
    elif len(digits) == 4:
        current = (today or date.today)()
        year, month, day = f"{current.year:04d}", digits[:2], digits[2:4]
    else:
        raise ValidationError("date", raw, f"Could not read '{raw}' as a date. Use YYYYMMDD, YYYY/MM/DD or MMDD.")

    if not 1 <= int(month) <= 12 or not 1 <= int(day) <= 31:
        raise ValidationError("date", raw, f"'{raw}' is not a valid date. Use YYYYMMDD, YYYY/MM/DD or MMDD.")
    return f"{year}/{month}/{day}"


def format_today(today: Optional[Callable[[], date]] = None) -> str:
    """Return the current date in the normalized ``YYYY/MM/DD`` form."""
    return (today or date.today)().strftime("%Y/%m/%d")


def normalize_title(raw: Optional[str]) -> str:
    """Return the title text, or an empty string for ``no``/skip."""
    text = (raw or "").strip()
    if text.lower() == SKIP_WORD:
        return ""
    return text


def extract_slack_url(text: str) -> str:
    """Strip the Slack hyperlink wrapper ``<url|label>`` when present."""
    match = _SLACK_LINK.match(text or "")
    if match:
        return match.group(1)
    return (text or "").strip()


def validate_link(raw: Optional[str]) -> str:
    """Return a cleaned absolute http(s) URL, or ``""`` when the link is omitted.

    Raises:
        ValidationError: If the text is neither empty/``no`` nor a valid URL.
    """
    text = (raw or "").strip().replace("\r", "").replace("\n", "")
    if not text or text.lower() == SKIP_WORD:
        return ""

    url = extract_slack_url(text)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("link", raw or "", f"'{text}' is not a valid http(s) link. Send a URL or 'no'.")
    return url


def to_entry_date(normalized: str) -> str:
    """Convert ``YYYY/MM/DD`` into the ``YYYY-MM-DD`` form stored in the index."""
    return normalized.replace("/", "-")
