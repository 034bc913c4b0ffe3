"""Parsing and formatting of PAX time stamps (``seconds.fraction``)."""

from __future__ import annotations

import re

__all__ = ["PaxTimeError", "parse_pax_time", "format_pax_time"]

_NS_PER_SECOND = 1_000_000_000
_MAX_NANOSECOND_DIGITS = 9
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_SECONDS = re.compile(r"[+-]?[0-9]+")
_DIGITS = re.compile(r"[0-9]+")


class PaxTimeError(ValueError):
    """Raised when a PAX time stamp cannot be parsed."""


def parse_pax_time(text: str) -> int:
    """Parse a PAX time stamp into nanoseconds since the Unix epoch.

    Negative time stamps are accepted; digits beyond nanosecond precision
    are truncated.
    """
    seconds_text, _, fraction = text.partition(".")
    if not _SECONDS.fullmatch(seconds_text):
        raise PaxTimeError(f"invalid PAX time {text!r}")
    seconds = int(seconds_text)
    if not _INT64_MIN <= seconds <= _INT64_MAX:
        raise PaxTimeError(f"PAX time {text!r} out of range")
    if not fraction:
        return seconds * _NS_PER_SECOND

    if not _DIGITS.fullmatch(fraction):
        raise PaxTimeError(f"invalid PAX time {text!r}")
    fraction = fraction[:_MAX_NANOSECOND_DIGITS].ljust(_MAX_NANOSECOND_DIGITS, "0")
    nanoseconds = int(fraction)
    if seconds_text.startswith("-"):
        return seconds * _NS_PER_SECOND - nanoseconds
    return seconds * _NS_PER_SECOND + nanoseconds


def format_pax_time(ns: int) -> str:
    """Format nanoseconds since the Unix epoch as a PAX time stamp."""
    seconds, nanoseconds = divmod(ns, _NS_PER_SECOND)
    if nanoseconds == 0:
        return str(seconds)
    sign = ""
    if seconds < 0:
        sign = "-"
        seconds = -(seconds + 1)
        nanoseconds = _NS_PER_SECOND - nanoseconds
    return f"{sign}{seconds}.{nanoseconds:09d}".rstrip("0")