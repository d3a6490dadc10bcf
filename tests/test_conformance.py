"""Beacon decoder conformance suite.

Runs every vector from conformance/beacon_vectors.json against
conformance/beacon_expected.json.

Usage:
    python tests/test_conformance.py [--vectors-dir DIR]
    python -m pytest tests/test_conformance.py -v
    DIVOLTE_VECTORS_DIR=conformance python tests/test_conformance.py
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import unittest
from typing import Any, Dict, List, Optional, Tuple

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from divolte_tag import BeaconError, decode_beacon

# ── Locate conformance data ───────────────────────────────────

_VECTORS_DIR: Optional[str] = os.environ.get("DIVOLTE_VECTORS_DIR", None)


def _find_vectors_dir() -> str:
    if _VECTORS_DIR:
        return _VECTORS_DIR
    candidates = [
        os.path.join(os.path.dirname(__file__), "..", "conformance"),
        os.path.join(os.path.dirname(__file__), "conformance"),
    ]
    for d in candidates:
        if os.path.isfile(os.path.join(d, "beacon_vectors.json")):
            return d
    raise FileNotFoundError(
        "Cannot find conformance vectors. Set DIVOLTE_VECTORS_DIR or --vectors-dir."
    )


def _load_data() -> Tuple[List[dict], Dict[str, dict], str]:
    """Load vectors and expected values.  Returns (vectors, expected, version)."""
    d = _find_vectors_dir()
    with open(os.path.join(d, "beacon_vectors.json"), "r", encoding="utf-8") as f:
        data = json.load(f)
    with open(os.path.join(d, "beacon_expected.json"), "r", encoding="utf-8") as f:
        expected = json.load(f)["expected"]
    return data["vectors"], expected, data.get("protocol_version", "1")


def _run_vector(vec: dict) -> Dict[str, Any]:
    """Decode one vector.  Returns {"beacon": ...} or {"err": ..., ["field": ...]}."""
    try:
        return {"beacon": decode_beacon(vec["query"]).as_dict()}
    except BeaconError as e:
        out: Dict[str, Any] = {"err": e.code}
        field = getattr(e, "field", None)
        if field is not None:
            out["field"] = field
        return out


# ── unittest integration ──────────────────────────────────────

class ConformanceTests(unittest.TestCase):
    """Dynamically generated: one test method per vector."""
    pass


def _make_test(vec: dict, exp: dict):
    def test_fn(self: unittest.TestCase) -> None:
        got = _run_vector(vec)
        self.assertEqual(got, exp,
                         "{}: got {} expected {}".format(vec["test_id"], got, exp))
    return test_fn


# Attach test methods at import time.
try:
    _vectors, _expected, _version = _load_data()
    for _vec in _vectors:
        _tid = _vec["test_id"]
        _fn = _make_test(_vec, _expected[_tid])
        _fn.__name__ = "test_{}".format(_tid)
        _fn.__qualname__ = "ConformanceTests.test_{}".format(_tid)
        setattr(ConformanceTests, "test_{}".format(_tid), _fn)
except FileNotFoundError:
    pass


class TestVectorFiles(unittest.TestCase):
    def test_every_vector_has_an_expectation(self):
        vectors, expected, _ = _load_data()
        ids = [v["test_id"] for v in vectors]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(set(ids), set(expected))


# ── Standalone CLI runner ─────────────────────────────────────

def main() -> None:
    global _VECTORS_DIR

    parser = argparse.ArgumentParser(description="divolte beacon conformance runner")
    parser.add_argument("--vectors-dir", default=None,
                        help="Directory with conformance vector files")
    args, _remaining = parser.parse_known_args()

    if args.vectors_dir:
        _VECTORS_DIR = args.vectors_dir
        os.environ["DIVOLTE_VECTORS_DIR"] = args.vectors_dir

    vectors, expected, version = _load_data()

    passed = 0
    failed = 0
    failures: List[Tuple[str, dict, dict]] = []

    for vec in vectors:
        tid = vec["test_id"]
        got = _run_vector(vec)
        exp = expected[tid]
        if got == exp:
            passed += 1
        else:
            failed += 1
            failures.append((tid, got, exp))

    total = passed + failed
    print("CONFORMANCE (protocol v{}): {}/{} PASS".format(version, passed, total))
    for tid, got, exp in failures:
        print("  FAIL {}: got={} expected={}".format(tid, got, exp))

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
