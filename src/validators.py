"""
Format checks and display formatters shared by ingestion, mapping and export.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_CHARS_PATTERN = re.compile(r"^[\d\s\-+().]+$")
ZIP_CODE_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
UNSAFE_FILE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

DISPLAY_DATE_FORMAT = "%m/%d/%Y"

# Tried in order after ISO 8601
DATE_INPUT_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%m/%d/%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
]


def is_valid_email(value: str) -> bool:
    return bool(value) and bool(EMAIL_PATTERN.match(value))


def is_valid_phone(value: str) -> bool:
    """Accept 10-15 digits written with common separators."""
    if not value or not PHONE_CHARS_PATTERN.match(value):
        return False
    digits = re.sub(r"\D", "", value)
    return 10 <= len(digits) <= 15


def is_valid_zip_code(value: str) -> bool:
    return bool(value) and bool(ZIP_CODE_PATTERN.match(value))


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date from a date/datetime or a string in one of the common formats.

    Returns:
        A date, or None when the value cannot be interpreted as one.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso_text).date()
    except ValueError:
        pass

    for fmt in DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_date(value: Any) -> str:
    """Format a date as MM/DD/YYYY, or return an empty string if it is not a date."""
    parsed = parse_date(value)
    if parsed is None:
        return ""
    return parsed.strftime(DISPLAY_DATE_FORMAT)


def format_phone(value: str) -> str:
    """
    Format 10-digit numbers as (XXX) XXX-XXXX and 11-digit numbers with a
    leading country code as +C (XXX) XXX-XXXX. Anything else is returned as-is.
    """
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 10:
        return f"({digits[0:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11:
        return f"+{digits[0]} ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return value


def sanitize_file_name(name: str) -> str:
    """Replace every character outside [A-Za-z0-9._-] with an underscore."""
    return UNSAFE_FILE_CHARS.sub("_", name)
