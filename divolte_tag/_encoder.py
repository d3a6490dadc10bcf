"""Beacon construction and query-string encoding.

A beacon is an ordered mapping of wire codes to strings, built fresh for
every event occurrence.  Field order on the wire is fixed::

    r  l  w  h  i  j  n  [t  t.<param> ...]

Custom parameters keep the order the caller supplied them in.  Absent
optional fields are left out entirely rather than sent empty, with one
exception: the referrer is always sent (an empty ``r=`` means "no
referrer", exactly as ``document.referrer`` reports it).

Values are percent-encoded with nothing left unescaped except the RFC 3986
unreserved set, which matches ``encodeURIComponent`` closely enough that
beacons from this encoder and from the served script decode identically.
"""

from __future__ import annotations

import itertools
import secrets
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import quote

from ._constants import (
    EVENT_PARAM_PREFIX,
    NONCE_PREFIX_BYTES,
    PARAM_EVENT_TYPE,
    PARAM_LOCATION,
    PARAM_NONCE,
    PARAM_ORDER,
    PARAM_REFERRER,
    PARAM_SCREEN_HEIGHT,
    PARAM_SCREEN_WIDTH,
    PARAM_VIEWPORT_HEIGHT,
    PARAM_VIEWPORT_WIDTH,
)
from ._errors import MalformedFieldError

Beacon = Dict[str, str]


@dataclass(frozen=True)
class Measurements:
    """Viewport and screen size in CSS pixels.  None means "not measured"."""

    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None


NO_MEASUREMENTS = Measurements()


class NonceSource:
    """Cache-busting tokens for one page load.

    A random prefix drawn once per page plus a monotonically increasing
    counter: unique within the page by construction, and unlikely to
    collide across pages.  ``next()`` is safe to call from several
    threads (itertools.count is atomic under the GIL).
    """

    def __init__(self, prefix: Optional[str] = None) -> None:
        self._prefix = prefix if prefix is not None else secrets.token_hex(NONCE_PREFIX_BYTES)
        self._counter = itertools.count()

    @property
    def prefix(self) -> str:
        return self._prefix

    def next(self) -> str:
        return "{}{:x}".format(self._prefix, next(self._counter))


def _positive(value: Optional[int]) -> Optional[str]:
    # bool before int, same trap as everywhere else.
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return str(value)


def default_fields(
    location: str,
    referrer: Optional[str],
    measurements: Measurements,
    nonce: str,
) -> Beacon:
    """The fields every beacon carries, page view or custom."""
    if not location:
        raise MalformedFieldError(PARAM_LOCATION, location, "a non-empty URL")
    if not nonce:
        raise MalformedFieldError(PARAM_NONCE, nonce, "a non-empty token")

    fields: Beacon = {
        PARAM_REFERRER: referrer or "",
        PARAM_LOCATION: location,
    }
    sizes = (
        (PARAM_VIEWPORT_WIDTH, measurements.viewport_width),
        (PARAM_VIEWPORT_HEIGHT, measurements.viewport_height),
        (PARAM_SCREEN_WIDTH, measurements.screen_width),
        (PARAM_SCREEN_HEIGHT, measurements.screen_height),
    )
    for code, value in sizes:
        text = _positive(value)
        if text is not None:
            fields[code] = text
    fields[PARAM_NONCE] = nonce
    return fields


def page_view_beacon(
    location: str,
    referrer: Optional[str],
    measurements: Measurements,
    nonce: str,
) -> Beacon:
    return default_fields(location, referrer, measurements, nonce)


EventParameters = Union[Mapping[str, object], Iterable[Tuple[str, object]]]


def _parameter_items(parameters: Optional[EventParameters]) -> List[Tuple[str, object]]:
    if parameters is None:
        return []
    if isinstance(parameters, Mapping):
        return list(parameters.items())
    return list(parameters)


def custom_event_beacon(
    location: str,
    referrer: Optional[str],
    measurements: Measurements,
    nonce: str,
    event_type: str,
    parameters: Optional[EventParameters] = None,
) -> Beacon:
    """Default fields plus ``t`` and one ``t.<k>`` per parameter.

    Parameter values are stringified; None becomes the empty string.
    A parameter name repeated in an iterable keeps its first value, which
    is also what the decoder would keep.
    """
    if not isinstance(event_type, str) or not event_type:
        raise MalformedFieldError(PARAM_EVENT_TYPE, event_type, "a non-empty event name")

    fields = default_fields(location, referrer, measurements, nonce)
    fields[PARAM_EVENT_TYPE] = event_type
    for key, value in _parameter_items(parameters):
        if not isinstance(key, str) or not key:
            raise MalformedFieldError(EVENT_PARAM_PREFIX + str(key), None, "a non-empty parameter name")
        code = EVENT_PARAM_PREFIX + key
        if code not in fields:
            fields[code] = "" if value is None else str(value)
    return fields


# ── Query-string encoding ────────────────────────────────────

def _check_codes(fields: Mapping[str, str]) -> None:
    has_event = PARAM_EVENT_TYPE in fields
    for code, value in fields.items():
        if code.startswith(EVENT_PARAM_PREFIX):
            if code == EVENT_PARAM_PREFIX:
                raise MalformedFieldError(code, value, "a non-empty parameter name")
            if not has_event:
                raise MalformedFieldError(code, value, "'t' alongside any 't.<param>'")
        elif code not in PARAM_ORDER:
            raise MalformedFieldError(code, value, "a known beacon parameter code")
        if not isinstance(value, str):
            raise MalformedFieldError(code, repr(value), "a string value")


def _ordered(fields: Mapping[str, str]) -> List[Tuple[str, str]]:
    out = [(code, fields[code]) for code in PARAM_ORDER if code in fields]
    out.extend((k, v) for k, v in fields.items() if k.startswith(EVENT_PARAM_PREFIX))
    return out


def encode_beacon(fields: Mapping[str, str]) -> str:
    """Serialize a beacon to its canonical query string (no leading '?')."""
    _check_codes(fields)
    return "&".join(
        "{}={}".format(quote(code, safe=""), quote(value, safe=""))
        for code, value in _ordered(fields)
    )


def beacon_url(base_url: str, fields: Mapping[str, str], path: str) -> str:
    """Full GET URL for a beacon: ``<base_url><path>?<query>``."""
    return "{}{}?{}".format(base_url.rstrip("/"), path, encode_beacon(fields))
