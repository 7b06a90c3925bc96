"""
utils/time_utils.py

Purpose: Time and expiry helpers

- Flow expiry checks
- OTP expiry checks
- Report date ranges
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple


def is_expired(since: Optional[datetime], timeout_minutes: int = 30) -> bool:
    """
    Checks if more than timeout_minutes have passed since the given time.
    """
    if not since:
        return True

    expiry_time = since + timedelta(minutes=timeout_minutes)
    return datetime.utcnow() > expiry_time


def calculate_otp_expiry(otp_time: datetime, validity_minutes: int = 10) -> datetime:
    """
    Calculates OTP expiry timestamp.
    """
    return otp_time + timedelta(minutes=validity_minutes)


def format_timestamp(dt: Optional[datetime], format_str: str = "%d %b %Y") -> str:
    """
    Formats a datetime object to string.
    """
    if not dt:
        return "N/A"
    return dt.strftime(format_str)


def get_date_range(range_name: Optional[str], now: Optional[datetime] = None) -> Tuple[datetime, datetime, str]:
    """
    Resolves a named report range into (start, end, label).

    Supported names: today, yesterday, this_week, last_week, this_month,
    last_month. Anything else falls back to this_month.
    """
    now = now or datetime.utcnow()
    start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    key = (range_name or "this_month").strip().lower().replace(" ", "_")

    if key == "today":
        return start_of_today, now, "Today"

    if key == "yesterday":
        start = start_of_today - timedelta(days=1)
        return start, start_of_today, "Yesterday"

    if key == "this_week":
        start = start_of_today - timedelta(days=start_of_today.weekday())
        return start, now, "This Week"

    if key == "last_week":
        end = start_of_today - timedelta(days=start_of_today.weekday())
        return end - timedelta(days=7), end, "Last Week"

    start_of_month = start_of_today.replace(day=1)
    if key == "last_month":
        previous_month_end = start_of_month
        previous_month_start = (start_of_month - timedelta(days=1)).replace(day=1)
        return previous_month_start, previous_month_end, previous_month_start.strftime("%B %Y")

    return start_of_month, now, start_of_month.strftime("%B %Y")
