#!/usr/bin/env python3
# tools/invariants_runner.py
#
# Randomized property checks for the tag configuration and the beacon
# protocol.
#
# This runner:
# - resolves random partial configurations and checks determinism and
#   that every field is either the input value or the documented default
# - checks the name pattern accepts/rejects exactly what it should
# - drives random page loads through a Tag and checks the page view comes
#   first, nonces never repeat, and every beacon decodes back to its input
# - throws random query strings at the decoder: it must return a beacon
#   or raise a BeaconError, nothing else
#
# Exit code:
#   0 -> all checks passed
#   1 -> invariant violation

import os, sys, random, string
from datetime import timedelta
from typing import Any, Dict, List

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from divolte_tag import (
    DEFAULT_TAG_CONFIGURATION,
    BeaconError,
    ConfigValidationError,
    Measurements,
    Page,
    RecordingTransport,
    Tag,
    decode_beacon,
    resolve_configuration,
)
from divolte_tag._constants import NAME_RE

SEED = int(os.environ.get("DIVOLTE_SEED", "1337"))
TRIALS = int(os.environ.get("DIVOLTE_TRIALS", "500"))
MAX_EVENTS = int(os.environ.get("DIVOLTE_MAX_EVENTS", "8"))
MAX_PARAMS = int(os.environ.get("DIVOLTE_MAX_PARAMS", "4"))
MAX_STR = int(os.environ.get("DIVOLTE_MAX_STR", "16"))

NAME_ALPHABET = string.ascii_letters + string.digits + "_-"
NOISE_ALPHABET = NAME_ALPHABET + ".%&=+?/ #é中"

DEFAULTS = DEFAULT_TAG_CONFIGURATION


def fail(msg: str, ctx: Any) -> None:
    print("INVARIANT FAIL:", msg)
    print("CTX:", repr(ctx)[:2000])
    raise SystemExit(1)


def rand_text(rng: random.Random, alphabet: str, nmin: int = 0) -> str:
    return "".join(rng.choice(alphabet) for _ in range(rng.randint(nmin, MAX_STR)))


def rand_name(rng: random.Random) -> str:
    r = rng.random()
    if r < 0.6:
        return rand_text(rng, NAME_ALPHABET, 1) + ".js"
    if r < 0.8:
        return rand_text(rng, NOISE_ALPHABET) + rng.choice([".js", ".jsx", "", ".JS"])
    return rng.choice(["", ".js", "a.js.js", "a b.js", "a.js\n", "é.js"])


def rand_partial_config(rng: random.Random) -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    if rng.random() < 0.5:
        raw["name"] = rand_name(rng)
    if rng.random() < 0.5:
        raw["file"] = rand_text(rng, NAME_ALPHABET + "/.", 1)
    for key in ("logging", "debug", "autoPageViewEvent"):
        if rng.random() < 0.5:
            raw[key] = rng.random() < 0.5
    if rng.random() < 0.5:
        raw["eventTimeout"] = "{} {}".format(rng.randint(0, 5000), rng.choice(["ms", "milliseconds", "s"]))
    return raw


def check_config(rng: random.Random) -> None:
    raw = rand_partial_config(rng)
    name = raw.get("name")
    try:
        a = resolve_configuration(raw)
        b = resolve_configuration(dict(raw))
    except ConfigValidationError as e:
        if name is None or NAME_RE.fullmatch(name) is not None:
            fail("valid configuration rejected: {}".format(e), raw)
        if e.field != "name":
            fail("rejection names the wrong field: {}".format(e.field), raw)
        return
    if name is not None and NAME_RE.fullmatch(name) is None:
        fail("invalid name accepted", raw)
    if a != b or str(a) != str(b):
        fail("resolution is not deterministic", raw)
    checks = [
        ("name", a.name, DEFAULTS.name),
        ("file", a.file, DEFAULTS.file),
        ("logging", a.logging, DEFAULTS.logging),
        ("debug", a.debug, DEFAULTS.debug),
        ("autoPageViewEvent", a.auto_page_view_event, DEFAULTS.auto_page_view_event),
    ]
    for key, got, default in checks:
        if got != raw.get(key, default):
            fail("field {} is neither input nor default".format(key), (raw, a))
    if "eventTimeout" not in raw and a.event_timeout != timedelta(milliseconds=750):
        fail("eventTimeout default is not 750ms", a)
    if resolve_configuration(a.to_settings()) != a:
        fail("to_settings() does not resolve back to the same configuration", a)


def check_page_load(rng: random.Random) -> None:
    config = resolve_configuration({
        "autoPageViewEvent": rng.random() < 0.7,
        "eventTimeout": "200 milliseconds",
    })
    size = Measurements(rng.randint(1, 4000), rng.randint(1, 4000),
                        rng.randint(1, 8000), rng.randint(1, 8000))
    page = Page(location="http://example.com/" + rand_text(rng, NAME_ALPHABET),
                referrer=rng.choice(["", "http://ref.example/"]),
                measure=lambda: size)
    transport = RecordingTransport()
    tag = Tag(config, page, transport)

    events: List[Dict[str, str]] = []
    ready_at = rng.randint(0, MAX_EVENTS)
    n_events = rng.randint(0, MAX_EVENTS)
    for k in range(n_events + 1):
        if k == ready_at:
            tag.page_ready()
        if k < n_events:
            params = {rand_text(rng, NAME_ALPHABET, 1): rand_text(rng, NOISE_ALPHABET)
                      for _ in range(rng.randint(0, MAX_PARAMS))}
            tag.signal("event{}".format(k), params)
            events.append(params)
    tag.page_ready()

    decoded = [decode_beacon(q) for q in transport.queries]
    nonces = [b.nonce for b in decoded]
    if len(set(nonces)) != len(nonces) or not all(nonces):
        fail("nonce reused or empty within one page load", nonces)

    customs = [b for b in decoded if b.is_custom_event]
    views = [b for b in decoded if not b.is_custom_event]
    if config.auto_page_view_event:
        if len(views) != 1 or decoded[0].is_custom_event:
            fail("page view is not the single first beacon", transport.queries)
    elif views:
        fail("page view sent with autoPageViewEvent disabled", transport.queries)
    if len(customs) != n_events:
        fail("custom beacon count mismatch", (n_events, transport.queries))
    for b, params in zip(customs, events):
        if dict(b.event_parameters) != params:
            fail("custom parameters did not survive the round trip", (params, b.as_dict()))
        if b.location != page.location or b.viewport_width != size.viewport_width:
            fail("default fields did not survive the round trip", b.as_dict())


def check_decoder_noise(rng: random.Random) -> None:
    parts = []
    for _ in range(rng.randint(0, 8)):
        key = rng.choice(["r", "l", "w", "h", "i", "j", "n", "t", "t.", "t.x", "zz", ""])
        parts.append(key + rng.choice(["=", "", "=="]) + rand_text(rng, NOISE_ALPHABET))
    query = "&".join(parts)
    try:
        decode_beacon(query)
    except BeaconError:
        pass
    except Exception as e:  # anything else is a decoder bug
        fail("decoder raised {}: {}".format(type(e).__name__, e), query)


def main() -> int:
    rng = random.Random(SEED)
    for _ in range(TRIALS):
        check_config(rng)
        check_page_load(rng)
        check_decoder_noise(rng)
    print(f"OK: invariants passed for TRIALS={TRIALS} seed={SEED}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
