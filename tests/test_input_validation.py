from datetime import date

import pytest

from utils.errors import ValidationError
from utils.input_validation import (
    extract_slack_url,
    format_today,
    normalize_title,
    to_entry_date,
    validate_date,
    validate_link,
)


def _today():
    return date(2025, 3, 9)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("20241225", "2024/12/25"),
        ("2024/12/25", "2024/12/25"),
        ("2024-12-25", "2024/12/25"),
        ("1225", "2025/12/25"),
        ("12/25", "2025/12/25"),
        ("  0101 ", "2025/01/01"),
    ],
)
def test_validate_date_accepts_both_shapes(raw, expected):
    assert validate_date(raw, _today) == expected


@pytest.mark.parametrize(
    "raw", ["2024", "202412", "", "abc", "20241325", "20240100", "1301", "2024/12/32", "２０２４１２２５", "١٢٢٥"]
)
def test_validate_date_rejects_bad_input(raw):
    with pytest.raises(ValidationError) as info:
        validate_date(raw, _today)
    assert info.value.field == "date"


def test_validate_date_does_not_check_days_per_month():
    assert validate_date("20240231", _today) == "2024/02/31"


def test_format_today_uses_injected_clock():
    assert format_today(_today) == "2025/03/09"


@pytest.mark.parametrize("raw, expected", [("no", ""), ("NO", ""), ("  No  ", ""), ("", ""), (None, ""), ("Sunset", "Sunset")])
def test_normalize_title(raw, expected):
    assert normalize_title(raw) == expected


def test_validate_link_omitted():
    assert validate_link("") == ""
    assert validate_link("No") == ""
    assert validate_link(None) == ""


def test_validate_link_strips_slack_wrapper():
    assert validate_link("<https://example.com/a?b=1|example.com/a>") == "https://example.com/a?b=1"
    assert validate_link("<http://example.com>") == "http://example.com"
    assert extract_slack_url("plain text") == "plain text"


@pytest.mark.parametrize("raw", ["example.com", "ftp://example.com/file", "https://", "not a url"])
def test_validate_link_rejects_non_http_urls(raw):
    with pytest.raises(ValidationError):
        validate_link(raw)


def test_to_entry_date():
    assert to_entry_date("2024/12/25") == "2024-12-25"
