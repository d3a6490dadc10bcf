"""End-to-end tests: a Tag sending over HTTP to a local Collector.

These replace driving a real browser against a real listener: the tag
state machine, the HTTP transport and the decoder all run for real, only
the page is simulated.
"""

from __future__ import annotations

import os
import queue
import sys
import threading
import unittest

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from divolte_tag import (
    DEFAULT_TAG_CONFIGURATION,
    Collector,
    HttpTransport,
    Measurements,
    Page,
    Tag,
    resolve_configuration,
)

SIZES = Measurements(viewport_width=400, viewport_height=300, screen_width=1024, screen_height=768)


class CollectorTestCase(unittest.TestCase):
    config = DEFAULT_TAG_CONFIGURATION

    def setUp(self):
        self.collector = Collector(self.config).start()
        self.addCleanup(self.collector.stop)
        self.transport = HttpTransport(self.collector.base_url, timeout=5.0)
        self.addCleanup(self.transport.close)
        self.page = Page(location=self.collector.base_url + "/", referrer="", measure=lambda: SIZES)


class TestSignals(CollectorTestCase):
    def test_signal_when_opening_page(self):
        tag = Tag(self.config, self.page, self.transport)
        tag.page_ready()
        b = self.collector.next_beacon(timeout=10)
        self.assertEqual(b.location, self.page.location)
        self.assertGreater(b.screen_width, 0)
        self.assertGreater(b.screen_height, 0)
        self.assertEqual(b.viewport_width, 400)
        self.assertEqual(b.viewport_height, 300)
        self.assertTrue(b.nonce)
        self.assertFalse(b.is_custom_event)

    def test_signal_custom_event(self):
        tag = Tag(self.config, self.page, self.transport)
        tag.page_ready()
        first = self.collector.next_beacon(timeout=10)
        self.assertFalse(first.is_custom_event)

        tag.signal("customInputLanguage", {"text": "Java"})
        b = self.collector.next_beacon(timeout=10)
        self.assertEqual(b.event_type, "customInputLanguage")
        self.assertEqual(dict(b.event_parameters), {"text": "Java"})
        self.assertEqual(b.location, self.page.location)
        self.assertIsNotNone(b.viewport_width)
        self.assertIsNotNone(b.screen_height)
        self.assertTrue(b.nonce)
        self.assertNotEqual(b.nonce, first.nonce)

    def test_many_events_all_arrive(self):
        tag = Tag(self.config, self.page, self.transport)
        tag.page_ready()
        for k in range(20):
            tag.signal("e", {"k": k})
        received = [self.collector.next_beacon(timeout=10) for _ in range(21)]
        self.assertEqual(len({b.nonce for b in received}), 21)
        self.assertEqual(sorted(int(b.event_parameters["k"]) for b in received if b.is_custom_event),
                         list(range(20)))


class TestRejections(CollectorTestCase):
    def test_missing_location_is_client_error(self):
        r = requests.get(self.collector.base_url + "/event?w=1&h=2", timeout=5)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "ERR_MISSING_FIELD")

    def test_malformed_field_is_client_error(self):
        r = requests.get(self.collector.base_url + "/event?l=x&w=wide", timeout=5)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["error"], "ERR_MALFORMED_FIELD")

    def test_bad_request_does_not_affect_others(self):
        statuses = []
        lock = threading.Lock()

        def hit(query):
            r = requests.get(self.collector.base_url + "/event?" + query, timeout=5)
            with lock:
                statuses.append(r.status_code)

        queries = ["l=ok{}".format(k) if k % 2 else "w=bad" for k in range(20)]
        threads = [threading.Thread(target=hit, args=(q,)) for q in queries]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(sorted(statuses), [200] * 10 + [400] * 10)
        got = {self.collector.next_beacon(timeout=5).location for _ in range(10)}
        self.assertEqual(got, {"ok{}".format(k) for k in range(1, 20, 2)})
        with self.assertRaises(queue.Empty):
            self.collector.next_beacon(timeout=0.2)

    def test_beacon_response_is_uncacheable_gif(self):
        r = requests.get(self.collector.base_url + "/event?l=x", timeout=5)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.headers["Content-Type"], "image/gif")
        self.assertIn("no-store", r.headers["Cache-Control"])

    def test_unknown_path(self):
        r = requests.get(self.collector.base_url + "/nope", timeout=5)
        self.assertEqual(r.status_code, 404)


class TestScriptServing(CollectorTestCase):
    config = resolve_configuration({"name": "tracker.js", "file": "static-tag.js"})

    def test_script_served_under_file_with_name_embedded(self):
        r = requests.get(self.collector.base_url + "/static-tag.js", timeout=5)
        self.assertEqual(r.status_code, 200)
        self.assertIn("javascript", r.headers["Content-Type"])
        self.assertIn("max-age=31536000", r.headers["Cache-Control"])
        self.assertIn('name: "tracker.js"', r.text)

    def test_name_is_not_a_path(self):
        r = requests.get(self.collector.base_url + "/tracker.js", timeout=5)
        self.assertEqual(r.status_code, 404)


class TestNestedScriptPath(CollectorTestCase):
    config = resolve_configuration({"file": "js/tag.js"})

    def test_script_under_directory_and_root_event_path(self):
        r = requests.get(self.collector.base_url + "/js/tag.js", timeout=5)
        self.assertEqual(r.status_code, 200)
        self.assertIn('origin + "/event"', r.text)
        self.assertEqual(requests.get(self.collector.base_url + "/js/event?l=x", timeout=5).status_code, 404)
        self.assertEqual(requests.get(self.collector.base_url + "/event?l=x", timeout=5).status_code, 200)
        self.assertEqual(self.collector.next_beacon(timeout=5).location, "x")


class TestBeaconRetention(unittest.TestCase):
    def test_callback_beacons_are_not_queued(self):
        seen = []
        with Collector(on_beacon=seen.append) as collector:
            for k in range(25):
                r = requests.get(collector.base_url + "/event?l=p{}".format(k), timeout=5)
                self.assertEqual(r.status_code, 200)
            with self.assertRaises(queue.Empty):
                collector.next_beacon(timeout=0.1)
        self.assertEqual([b.location for b in seen], ["p{}".format(k) for k in range(25)])

    def test_queue_keeps_only_the_newest(self):
        with Collector(max_queued=3) as collector:
            for k in range(10):
                requests.get(collector.base_url + "/event?l=p{}".format(k), timeout=5)
            got = [collector.next_beacon(timeout=1).location for _ in range(3)]
            with self.assertRaises(queue.Empty):
                collector.next_beacon(timeout=0.1)
        self.assertEqual(got, ["p7", "p8", "p9"])


class TestUnreachableCollector(unittest.TestCase):
    def test_send_failures_are_swallowed(self):
        collector = Collector().start()
        base = collector.base_url
        collector.stop()  # nothing listens on this port any more

        transport = HttpTransport(base, timeout=0.5)
        tag = Tag(DEFAULT_TAG_CONFIGURATION, Page(location="http://x/"), transport)
        self.assertIsNotNone(tag.page_ready())
        self.assertIsNotNone(tag.signal("e"))
        transport.close(wait=True)


if __name__ == "__main__":
    unittest.main()
