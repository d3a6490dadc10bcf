"""Tag configuration: the immutable value that parametrizes the tag.

Resolution is an explicit, fail-fast pipeline:

    raw mapping  →  reject unknown keys
                 →  for each field in declared order:
                        absent / None  → documented default
                        present        → validate (raise on first violation)
                 →  frozen TagConfiguration

There is no partially-built instance at any point: either every field
validates and the dataclass is constructed, or ConfigValidationError
escapes.  The default configuration is simply the resolver applied to an
empty mapping, computed once at import time.
"""

from __future__ import annotations

import collections.abc
import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ._constants import (
    DEFAULT_AUTO_PAGE_VIEW_EVENT,
    DEFAULT_DEBUG,
    DEFAULT_EVENT_TIMEOUT,
    DEFAULT_FILE,
    DEFAULT_LOGGING,
    DEFAULT_NAME,
    NAME_PATTERN,
    NAME_RE,
)
from ._duration import format_duration, parse_duration
from ._errors import ConfigValidationError

# Pseudo-field reported when the settings document itself is unusable.
DOCUMENT_FIELD = "<document>"


@dataclass(frozen=True)
class TagConfiguration:
    """Resolved, validated tag configuration.

    ``name`` is the logical tag identity embedded in the script; ``file``
    is the path the script is served under.  They are independent.
    """

    name: str
    file: str
    logging: bool
    debug: bool
    auto_page_view_event: bool
    event_timeout: timedelta

    def __str__(self) -> str:
        return (
            "TagConfiguration{{name={}, file={}, logging={}, debug={}, "
            "autoPageViewEvent={}, eventTimeout={}}}".format(
                self.name,
                self.file,
                _bool_text(self.logging),
                _bool_text(self.debug),
                _bool_text(self.auto_page_view_event),
                format_duration(self.event_timeout),
            )
        )

    def to_settings(self) -> Dict[str, Any]:
        """Settings-document form.  Resolving it yields an equal instance."""
        return {
            "name": self.name,
            "file": self.file,
            "logging": self.logging,
            "debug": self.debug,
            "autoPageViewEvent": self.auto_page_view_event,
            "eventTimeout": format_duration(self.event_timeout),
        }


def _bool_text(b: bool) -> str:
    return "true" if b else "false"


# ── Field validators ─────────────────────────────────────────
# Each takes the settings key (for error messages) and the raw value and
# returns the typed value or raises ConfigValidationError.

def _validate_name(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigValidationError(key, "a non-empty string matching " + NAME_PATTERN, value)
    if NAME_RE.fullmatch(value) is None:
        raise ConfigValidationError(key, "a value matching " + NAME_PATTERN, value)
    return value


def _validate_file(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigValidationError(key, "a non-empty string", value)
    return value


def _validate_bool(key: str, value: Any) -> bool:
    # Typed documents only: "true" is a string, not a boolean.
    if not isinstance(value, bool):
        raise ConfigValidationError(key, "a boolean", value)
    return value


def _validate_duration(key: str, value: Any) -> timedelta:
    expected = "a non-negative duration such as '750 milliseconds'"
    if isinstance(value, timedelta):
        delta = value
    elif isinstance(value, bool):
        # bool before int: True is an int in Python.
        raise ConfigValidationError(key, expected, value)
    elif isinstance(value, int):
        try:
            delta = timedelta(milliseconds=value)
        except OverflowError:
            raise ConfigValidationError(key, expected, value)
    elif isinstance(value, str):
        try:
            delta = parse_duration(value)
        except ValueError:
            raise ConfigValidationError(key, expected, value)
    else:
        raise ConfigValidationError(key, expected, value)
    if delta < timedelta(0):
        raise ConfigValidationError(key, expected, value)
    return delta


# (settings key, python key, raw default, validator) in declared order.
_FIELDS: List[Tuple[str, str, Any, Callable[[str, Any], Any]]] = [
    ("name", "name", DEFAULT_NAME, _validate_name),
    ("file", "file", DEFAULT_FILE, _validate_file),
    ("logging", "logging", DEFAULT_LOGGING, _validate_bool),
    ("debug", "debug", DEFAULT_DEBUG, _validate_bool),
    ("autoPageViewEvent", "auto_page_view_event", DEFAULT_AUTO_PAGE_VIEW_EVENT, _validate_bool),
    ("eventTimeout", "event_timeout", DEFAULT_EVENT_TIMEOUT, _validate_duration),
]

_KNOWN_KEYS = frozenset(k for f in _FIELDS for k in (f[0], f[1]))


def resolve_configuration(raw: Optional[Mapping[str, Any]] = None) -> TagConfiguration:
    """Resolve a partially-specified mapping into a TagConfiguration.

    Keys may use settings spelling (``autoPageViewEvent``) or Python
    spelling (``auto_page_view_event``), but not both for one field.
    """
    raw = {} if raw is None else raw
    if not isinstance(raw, collections.abc.Mapping):
        raise ConfigValidationError(DOCUMENT_FIELD, "a mapping of configuration fields", raw)

    for key in raw:
        if key not in _KNOWN_KEYS:
            raise ConfigValidationError(
                str(key), "one of " + ", ".join(f[0] for f in _FIELDS), raw[key]
            )

    resolved: Dict[str, Any] = {}
    for settings_key, py_key, default, validate in _FIELDS:
        if settings_key != py_key and settings_key in raw and py_key in raw:
            raise ConfigValidationError(
                settings_key, "either '{}' or '{}', not both".format(settings_key, py_key)
            )
        key = py_key if py_key in raw else settings_key
        value = raw.get(key)
        if value is None:
            # Defaults run through the validator too, so a bad constant
            # fails loudly at import instead of producing a bad instance.
            resolved[py_key] = validate(settings_key, default)
        else:
            resolved[py_key] = validate(settings_key, value)

    return TagConfiguration(**resolved)


DEFAULT_TAG_CONFIGURATION: TagConfiguration = resolve_configuration({})


# ── Settings documents ───────────────────────────────────────

def _reject_duplicate_keys(pairs: list) -> dict:
    result: dict = {}
    for key, value in pairs:
        if key in result:
            raise ConfigValidationError(key, "at most one occurrence per object")
        result[key] = value
    return result


def configuration_section(document: Any) -> Any:
    """Locate the tag settings inside a settings document.

    Accepts the bare tag section, ``{"javascript": {...}}``, or the
    collector-wide ``{"divolte": {"javascript": {...}}}`` tree.
    """
    if isinstance(document, dict) and isinstance(document.get("divolte"), dict):
        document = document["divolte"]
    if isinstance(document, dict) and isinstance(document.get("javascript"), dict):
        document = document["javascript"]
    return document


def parse_configuration(text: str) -> TagConfiguration:
    """Resolve a configuration from JSON settings-document text."""
    try:
        document = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(DOCUMENT_FIELD, "valid JSON ({})".format(e))
    return resolve_configuration(configuration_section(document))


def load_configuration(path: str) -> TagConfiguration:
    """Read and resolve a JSON settings document from disk."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigValidationError(DOCUMENT_FIELD, "a readable UTF-8 file ({})".format(e))
    return parse_configuration(text)
