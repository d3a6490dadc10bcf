"""Error codes and the exception hierarchy.

Every error carries a stable ``.code`` string.  Configuration errors are
fatal at load time; decode errors are per request and only ever reject
the one beacon that caused them.
"""

from __future__ import annotations

from typing import Optional

# ── Error codes ──────────────────────────────────────────────
ERR_CONFIG: str = "ERR_CONFIG"                    # invalid configuration field
ERR_MISSING_FIELD: str = "ERR_MISSING_FIELD"      # required beacon field absent
ERR_MALFORMED_FIELD: str = "ERR_MALFORMED_FIELD"  # beacon field present but unparsable
ERR_MALFORMED_QUERY: str = "ERR_MALFORMED_QUERY"  # query string itself undecodable


class TagError(Exception):
    """Base class for all divolte-tag errors.

    The ``.code`` attribute is one of the ERR_* strings above.  The CLI
    and the collector report it verbatim.
    """

    def __init__(self, code: str, msg: str = "") -> None:
        super().__init__(msg or code)
        self.code = code


class ConfigValidationError(TagError):
    """A configuration field is invalid.

    ``field`` names the offending field (in settings-document spelling),
    ``expected`` describes what would have been accepted.
    """

    def __init__(self, field: str, expected: str, value: object = None) -> None:
        msg = "invalid configuration field '{}': expected {}".format(field, expected)
        if value is not None:
            msg += ", got {!r}".format(value)
        super().__init__(ERR_CONFIG, msg)
        self.field = field
        self.expected = expected
        self.value = value


class BeaconError(TagError):
    """A beacon could not be built or decoded."""


class MissingFieldError(BeaconError):
    def __init__(self, field: str) -> None:
        super().__init__(ERR_MISSING_FIELD, "missing required field '{}'".format(field))
        self.field = field


class MalformedFieldError(BeaconError):
    def __init__(self, field: str, value: Optional[str], expected: str = "") -> None:
        msg = "malformed field '{}': {!r}".format(field, value)
        if expected:
            msg += " (expected {})".format(expected)
        super().__init__(ERR_MALFORMED_FIELD, msg)
        self.field = field
        self.value = value


class MalformedQueryError(BeaconError):
    def __init__(self, msg: str) -> None:
        super().__init__(ERR_MALFORMED_QUERY, msg)
