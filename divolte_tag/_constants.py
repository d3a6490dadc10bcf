"""Wire parameter codes, configuration defaults, and serving constants.

The parameter codes are what deployed tags put on the wire.  Renaming any
of them breaks every collector that already decodes them, so they are
frozen here and referenced everywhere else by name.
"""

from __future__ import annotations

import re
from typing import Tuple

__protocol_version__ = "1"

# ── Beacon parameter codes ───────────────────────────────────
PARAM_REFERRER: str = "r"
PARAM_LOCATION: str = "l"
PARAM_VIEWPORT_WIDTH: str = "w"
PARAM_VIEWPORT_HEIGHT: str = "h"
PARAM_SCREEN_WIDTH: str = "i"
PARAM_SCREEN_HEIGHT: str = "j"
PARAM_NONCE: str = "n"
PARAM_EVENT_TYPE: str = "t"

# Custom event parameters are a family: "t.<param>".
EVENT_PARAM_PREFIX: str = PARAM_EVENT_TYPE + "."

# Emission order for the fixed codes.  Custom parameters follow "t".
PARAM_ORDER: Tuple[str, ...] = (
    PARAM_REFERRER,
    PARAM_LOCATION,
    PARAM_VIEWPORT_WIDTH,
    PARAM_VIEWPORT_HEIGHT,
    PARAM_SCREEN_WIDTH,
    PARAM_SCREEN_HEIGHT,
    PARAM_NONCE,
    PARAM_EVENT_TYPE,
)

INTEGER_PARAMS: Tuple[str, ...] = (
    PARAM_VIEWPORT_WIDTH,
    PARAM_VIEWPORT_HEIGHT,
    PARAM_SCREEN_WIDTH,
    PARAM_SCREEN_HEIGHT,
)

REQUIRED_PARAMS: Tuple[str, ...] = (PARAM_LOCATION,)

# ── Endpoint ─────────────────────────────────────────────────
EVENT_PATH: str = "/event"

# ── Configuration defaults ───────────────────────────────────
# Kept as the raw settings-document values so that the default instance
# goes through exactly the same resolver as user input.
DEFAULT_NAME: str = "divolte.js"
DEFAULT_FILE: str = "divolte.js"
DEFAULT_LOGGING: bool = False
DEFAULT_DEBUG: bool = False
DEFAULT_AUTO_PAGE_VIEW_EVENT: bool = True
DEFAULT_EVENT_TIMEOUT: str = "750 milliseconds"

NAME_PATTERN: str = r"^[A-Za-z0-9_-]+\.js$"
NAME_RE = re.compile(NAME_PATTERN)

# ── Serving ──────────────────────────────────────────────────
# The script name changes whenever its content must change, so clients
# may cache it for a year.
SCRIPT_MAX_AGE_SECONDS: int = 365 * 24 * 3600
SCRIPT_CONTENT_TYPE: str = "application/javascript; charset=utf-8"

# Nonce: random per-page prefix + counter.
NONCE_PREFIX_BYTES: int = 6

# ── Decoder limits ───────────────────────────────────────────
# Beacons are small; anything larger is hostile or broken.
MAX_QUERY_FIELDS: int = 1_000
MAX_QUERY_LENGTH: int = 64 * 1024
