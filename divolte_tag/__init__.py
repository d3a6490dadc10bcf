"""divolte_tag — client tag configuration and beacon wire protocol.

A tag running on a page reports page views and custom events to a
collector as plain GET requests ("beacons") whose query string uses a
fixed set of short codes:

    r  referrer       l  location         n  cache-busting nonce
    w/h viewport size i/j screen size     t  custom event, t.<p> its params

Quick start:
    >>> from divolte_tag import resolve_configuration, decode_beacon
    >>> str(resolve_configuration({}))
    'TagConfiguration{name=divolte.js, file=divolte.js, logging=false, debug=false, autoPageViewEvent=true, eventTimeout=750 milliseconds}'
    >>> decode_beacon("l=http%3A%2F%2Fexample.com%2F&t=click&t.id=42").event_parameters["id"]
    '42'
"""

from __future__ import annotations

from ._collector import Collector
from ._config import (
    DEFAULT_TAG_CONFIGURATION,
    TagConfiguration,
    load_configuration,
    parse_configuration,
    resolve_configuration,
)
from ._constants import EVENT_PATH, NAME_PATTERN
from ._decoder import DecodedBeacon, decode_beacon, decode_beacon_url
from ._duration import format_duration, parse_duration
from ._encoder import (
    Measurements,
    NonceSource,
    beacon_url,
    custom_event_beacon,
    encode_beacon,
    page_view_beacon,
)
from ._errors import (
    ERR_CONFIG,
    ERR_MALFORMED_FIELD,
    ERR_MALFORMED_QUERY,
    ERR_MISSING_FIELD,
    BeaconError,
    ConfigValidationError,
    MalformedFieldError,
    MalformedQueryError,
    MissingFieldError,
    TagError,
)
from ._script import ScriptResource, render_tag_script, script_resource
from ._tag import HttpTransport, Page, RecordingTransport, Tag, TagState

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "TagConfiguration",
    "DEFAULT_TAG_CONFIGURATION",
    "resolve_configuration",
    "parse_configuration",
    "load_configuration",
    "parse_duration",
    "format_duration",
    "NAME_PATTERN",
    # Encoding and the tag
    "Measurements",
    "NonceSource",
    "page_view_beacon",
    "custom_event_beacon",
    "encode_beacon",
    "beacon_url",
    "Page",
    "Tag",
    "TagState",
    "HttpTransport",
    "RecordingTransport",
    # Decoding
    "DecodedBeacon",
    "decode_beacon",
    "decode_beacon_url",
    # Serving
    "EVENT_PATH",
    "ScriptResource",
    "render_tag_script",
    "script_resource",
    "Collector",
    # Exceptions
    "TagError",
    "ConfigValidationError",
    "BeaconError",
    "MissingFieldError",
    "MalformedFieldError",
    "MalformedQueryError",
    # Error codes
    "ERR_CONFIG",
    "ERR_MISSING_FIELD",
    "ERR_MALFORMED_FIELD",
    "ERR_MALFORMED_QUERY",
]
