"""Human-readable duration expressions.

Accepted grammar (whitespace between number and unit is optional)::

    <number> [<unit>]

where ``<number>`` is a decimal (``750``, ``1.5``, ``-2``) and ``<unit>``
is one of the spellings in ``_UNIT_NANOS``.  A bare number is
milliseconds.  Sign is parsed here and range-checked by the caller, so
"-5 ms" is a valid expression that configuration resolution later rejects.

timedelta has microsecond resolution; sub-microsecond inputs are
truncated toward zero.
"""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal
from typing import Dict

# Nanoseconds per unit, keyed by every accepted spelling.
_UNIT_NANOS: Dict[str, int] = {}


def _register(nanos: int, *names: str) -> None:
    for name in names:
        _UNIT_NANOS[name] = nanos


_register(1, "ns", "nano", "nanos", "nanosecond", "nanoseconds")
_register(1_000, "us", "micro", "micros", "microsecond", "microseconds")
_register(1_000_000, "ms", "milli", "millis", "millisecond", "milliseconds")
_register(1_000_000_000, "s", "second", "seconds")
_register(60 * 1_000_000_000, "m", "minute", "minutes")
_register(3600 * 1_000_000_000, "h", "hour", "hours")
_register(86400 * 1_000_000_000, "d", "day", "days")

_DURATION_RE = re.compile(r"^\s*([+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+))\s*([A-Za-z]*)\s*$")


def parse_duration(text: str) -> timedelta:
    """Parse a duration expression.  Raises ValueError on anything else."""
    m = _DURATION_RE.match(text)
    if m is None:
        raise ValueError("not a duration: {!r}".format(text))
    number, unit = m.group(1), m.group(2) or "ms"
    try:
        unit_nanos = _UNIT_NANOS[unit]
    except KeyError:
        raise ValueError("unknown duration unit {!r} in {!r}".format(unit, text))
    # Decimal keeps "1.5 s" exact; int() truncates toward zero.
    micros = int(Decimal(number) * unit_nanos / 1000)
    try:
        return timedelta(microseconds=micros)
    except OverflowError:
        raise ValueError("duration out of range: {!r}".format(text))


def duration_millis(delta: timedelta) -> int:
    """Whole milliseconds in delta, rounded down."""
    return delta // timedelta(milliseconds=1)


def format_duration(delta: timedelta) -> str:
    """Settings-document spelling of delta, e.g. ``"750 milliseconds"``."""
    return "{} milliseconds".format(duration_millis(delta))
