"""
utils/validation_utils.py

Purpose: Input validation

- Price and quantity parsing for free-form chat input ("5k", "₦1,500")
- Name normalization for case-insensitive lookups
- Email and OTP parsing
- Input sanitization
"""

import math
import re
from typing import Any, Optional


# Codes may touch the digits ("NGN5000", "2500naira")
_CURRENCY_PATTERN = re.compile(r"(₦|\$|£|€|ngn|usd|naira)", re.IGNORECASE)
_NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
_EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")

MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


def parse_price(value: Any) -> float:
    """
    Parses a price-like value into a float.

    Accepts numbers as-is and strings such as "1500", "₦1,500", "5k",
    "2.5M", "NGN 3000". Currency symbols, thousands separators and
    whitespace are ignored; a trailing k/m multiplies by a thousand or a
    million.

    Args:
        value: Raw value from the user or the AI provider

    Returns:
        The parsed amount, or NaN if the input is not a price
    """
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return math.nan

    cleaned = _CURRENCY_PATTERN.sub("", value)
    cleaned = cleaned.replace(",", "").replace(" ", "").strip().lower()
    if not cleaned:
        return math.nan

    multiplier = 1
    suffix = cleaned[-1]
    if suffix in MULTIPLIERS:
        multiplier = MULTIPLIERS[suffix]
        cleaned = cleaned[:-1]

    if not _NUMBER_PATTERN.match(cleaned):
        return math.nan

    return float(cleaned) * multiplier


def is_valid_amount(value: Any, allow_zero: bool = False) -> bool:
    """True when value is a finite number above zero (or zero when allowed)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if math.isnan(value) or math.isinf(value):
        return False
    return value >= 0 if allow_zero else value > 0


def parse_quantity(value: Any) -> Optional[int]:
    """
    Parses a unit count. Accepts ints, integral floats and strings like
    "3", "10 units", "2k". Returns None when the value is not a whole number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = re.sub(r"(units?|pcs|pieces|items?|bags?|cartons?)$", "", value.strip(), flags=re.IGNORECASE)
    number = parse_price(value)
    if math.isnan(number) or math.isinf(number) or number != int(number):
        return None
    return int(number)


def normalize_name(name: str) -> str:
    """Key used for case-insensitive uniqueness: trimmed, lower-cased, single-spaced."""
    return " ".join((name or "").split()).lower()


def extract_email(text: str) -> Optional[str]:
    if not text:
        return None
    match = _EMAIL_PATTERN.search(text)
    return match.group(0).lower() if match else None


def extract_otp(message: str) -> Optional[str]:
    """
    Extracts a 6-digit code from a message.

    Args:
        message: Message containing the OTP

    Returns:
        6-digit OTP if found, None otherwise
    """
    if not message:
        return None

    match = re.search(r"\b\d{6}\b", message)
    if match:
        return match.group(0)

    # Digits separated by spaces ("123 456")
    compact = re.sub(r"\s+", "", message)
    if re.fullmatch(r"\d{6}", compact):
        return compact

    return None


def sanitize_input(text: str, max_length: int = 1000) -> str:
    """
    Sanitizes user input before it is stored or echoed back.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = text[:max_length]

    # Remove markup-like characters
    text = re.sub(r"[<>{}\[\]]", "", text)

    # Normalize whitespace
    text = " ".join(text.split())

    return text.strip()
