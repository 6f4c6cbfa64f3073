"""Shared utilities used across the booking core."""

import re
from datetime import date, datetime, time, timezone

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("050-123 4567")
        '0501234567'
        >>> normalize_phone("+972 (50) 123-4567")
        '+972501234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def is_hhmm(value: str) -> bool:
    """True for zero-padded 24h ``HH:MM`` strings."""
    return bool(_HHMM.match(value))


def parse_iso_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ValueError on anything else."""
    return datetime.strptime(value, "%Y-%m-%d").date()


def hhmm_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def combine(day: str, hhmm: str, tzinfo=None) -> datetime:
    """Build an aware (or naive, without tzinfo) datetime from date and HH:MM strings."""
    parsed = time.fromisoformat(hhmm)
    return datetime.combine(parse_iso_date(day), parsed, tzinfo=tzinfo)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
