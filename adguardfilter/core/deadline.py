"""Deadline parsing and duration rendering for the reset endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from dateutil.parser import isoparse


class DeadlineFormatError(ValueError):
    pass


def parse_deadline(value: str) -> datetime:
    """
    Parse a reset deadline sent by the web UI.

    Accepts RFC 3339 / ISO 8601 with `Z` or an offset, with or without fractional
    seconds, ISO without an offset, and `YYYY-MM-DD HH:MM:SS`. Values without an offset
    are taken as UTC. Always returns a timezone-aware datetime.
    """
    text = (value or "").strip()
    # A bare date is not a deadline.
    if len(text) <= 10:
        raise DeadlineFormatError(f"invalid datetime format: {value!r}")
    try:
        parsed = isoparse(text)
    except (ValueError, OverflowError) as e:
        raise DeadlineFormatError(f"invalid datetime format: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    out = dt.replace(microsecond=0).isoformat()
    return out[:-6] + "Z" if out.endswith("+00:00") else out


def _trim_fraction(whole: int, frac: int, width: int) -> str:
    if not frac:
        return str(whole)
    return f"{whole}.{frac:0{width}d}".rstrip("0")


def format_duration(delta: timedelta) -> str:
    """
    Render a duration compactly, e.g. `1h2m3s`, `4m0.5s`, `250ms`, `-30s`.

    Hours appear only when non-zero, minutes when hours or minutes are. Zero is `0s`.
    """
    total_us = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    if total_us == 0:
        return "0s"
    sign = "-" if total_us < 0 else ""
    us = abs(total_us)

    if us < 1000:
        return f"{sign}{us}µs"
    if us < 1_000_000:
        return f"{sign}{_trim_fraction(us // 1000, us % 1000, 3)}ms"

    hours, rem = divmod(us, 3_600_000_000)
    minutes, rem = divmod(rem, 60_000_000)
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    out += f"{_trim_fraction(rem // 1_000_000, rem % 1_000_000, 6)}s"
    return out
