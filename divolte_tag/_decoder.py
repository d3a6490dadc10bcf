"""Beacon decoding: raw query string → DecodedBeacon.

decode_beacon() is a pure function of its input.  It touches no module
state beyond constants, so any number of collector threads may call it
at once without coordination.

Parsing rules:
  - a repeated code keeps its FIRST value; later duplicates are ignored
  - w/h/i/j must be ASCII digits with a value > 0 when present
  - l is required; every other code is optional
  - t.<param> keys form a family, collected without consulting t
  - unknown codes are ignored so older collectors accept newer tags
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from ._constants import (
    EVENT_PARAM_PREFIX,
    INTEGER_PARAMS,
    MAX_QUERY_FIELDS,
    MAX_QUERY_LENGTH,
    PARAM_EVENT_TYPE,
    PARAM_LOCATION,
    PARAM_NONCE,
    PARAM_REFERRER,
    PARAM_SCREEN_HEIGHT,
    PARAM_SCREEN_WIDTH,
    PARAM_VIEWPORT_HEIGHT,
    PARAM_VIEWPORT_WIDTH,
    REQUIRED_PARAMS,
)
from ._errors import MalformedFieldError, MalformedQueryError, MissingFieldError

# str.isdigit() and int() both accept non-ASCII digits; the wire does not.
_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class DecodedBeacon:
    location: str
    referrer: Optional[str] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    nonce: Optional[str] = None
    event_type: Optional[str] = None
    # Read-only view; left out of the hash, still compared for equality.
    event_parameters: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), hash=False,
    )

    @property
    def is_custom_event(self) -> bool:
        return self.event_type is not None

    def as_dict(self) -> Dict[str, Any]:
        """Plain-dict view for logging and JSON output."""
        return {
            "location": self.location,
            "referrer": self.referrer,
            "viewport_width": self.viewport_width,
            "viewport_height": self.viewport_height,
            "screen_width": self.screen_width,
            "screen_height": self.screen_height,
            "nonce": self.nonce,
            "event_type": self.event_type,
            "event_parameters": dict(self.event_parameters),
        }


def _split_query(query: str) -> List[Tuple[str, str]]:
    if len(query) > MAX_QUERY_LENGTH:
        raise MalformedQueryError("query exceeds {} characters".format(MAX_QUERY_LENGTH))
    if query.startswith("?"):
        query = query[1:]
    try:
        return parse_qsl(
            query,
            keep_blank_values=True,
            strict_parsing=False,
            errors="strict",
            max_num_fields=MAX_QUERY_FIELDS,
        )
    except UnicodeDecodeError:
        raise MalformedQueryError("query is not valid percent-encoded UTF-8")
    except ValueError:
        # parse_qsl signals max_num_fields overflow with a bare ValueError.
        raise MalformedQueryError("query has more than {} fields".format(MAX_QUERY_FIELDS))


def _first_values(pairs: List[Tuple[str, str]]) -> Dict[str, str]:
    first: Dict[str, str] = {}
    for code, value in pairs:
        if code not in first:
            first[code] = value
    return first


def _parse_dimension(code: str, value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    if _DIGITS.fullmatch(value) is None:
        raise MalformedFieldError(code, value, "a positive integer")
    n = int(value)
    if n <= 0:
        raise MalformedFieldError(code, value, "a positive integer")
    return n


def decode_fields(fields: Mapping[str, str]) -> DecodedBeacon:
    """Decode an already-split first-value mapping of code → value."""
    for code in REQUIRED_PARAMS:
        if code not in fields:
            raise MissingFieldError(code)

    dims = {code: _parse_dimension(code, fields.get(code)) for code in INTEGER_PARAMS}

    params: Dict[str, str] = {}
    for code, value in fields.items():
        if not code.startswith(EVENT_PARAM_PREFIX):
            continue
        name = code[len(EVENT_PARAM_PREFIX):]
        if not name:
            raise MalformedFieldError(code, value, "'t.<param>' with a non-empty name")
        params[name] = value

    return DecodedBeacon(
        location=fields[PARAM_LOCATION],
        referrer=fields.get(PARAM_REFERRER),
        viewport_width=dims[PARAM_VIEWPORT_WIDTH],
        viewport_height=dims[PARAM_VIEWPORT_HEIGHT],
        screen_width=dims[PARAM_SCREEN_WIDTH],
        screen_height=dims[PARAM_SCREEN_HEIGHT],
        nonce=fields.get(PARAM_NONCE),
        event_type=fields.get(PARAM_EVENT_TYPE),
        event_parameters=MappingProxyType(params),
    )


def decode_beacon(query: str) -> DecodedBeacon:
    """Decode a beacon query string (leading '?' optional)."""
    return decode_fields(_first_values(_split_query(query)))


def decode_beacon_url(url: str) -> DecodedBeacon:
    """Decode the query part of a full beacon request URL."""
    return decode_beacon(urlsplit(url).query)
