"""Unit tests for the served tag script."""

from __future__ import annotations

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from divolte_tag import DEFAULT_TAG_CONFIGURATION, render_tag_script, resolve_configuration, script_resource


class TestRenderTagScript(unittest.TestCase):
    def test_settings_embedded(self):
        config = resolve_configuration({
            "name": "site.js", "logging": True, "autoPageViewEvent": False, "eventTimeout": "2 s",
        })
        text = render_tag_script(config).decode("utf-8")
        self.assertIn('name: "site.js"', text)
        self.assertIn("logging: true", text)
        self.assertIn("debug: false", text)
        self.assertIn("autoPageViewEvent: false", text)
        self.assertIn("eventTimeout: 2000", text)

    def test_wire_codes_embedded(self):
        text = render_tag_script(DEFAULT_TAG_CONFIGURATION).decode("utf-8")
        for code in ('"r"', '"l"', '"w"', '"h"', '"i"', '"j"', '"n"', '"t"', '"/event"'):
            with self.subTest(code=code):
                self.assertIn(code, text)

    def test_endpoint_is_origin_relative(self):
        """A script served from a subdirectory still reports to /event at the root."""
        text = render_tag_script(resolve_configuration({"file": "js/tag.js"})).decode("utf-8")
        self.assertIn("document.currentScript", text)
        self.assertIn(".origin", text)
        self.assertIn('origin + "/event"', text)
        self.assertNotIn("lastIndexOf", text)
        self.assertNotIn("scripts.length - 1", text)

    def test_null_parameter_values_sent_empty(self):
        text = render_tag_script(DEFAULT_TAG_CONFIGURATION).decode("utf-8")
        self.assertIn('params[k] == null ? "" : String(params[k])', text)

    def test_measurement_timer_cleared_once_fired(self):
        text = render_tag_script(DEFAULT_TAG_CONFIGURATION).decode("utf-8")
        self.assertIn("timer = window.setTimeout", text)
        self.assertIn("window.clearTimeout(timer)", text)
        self.assertIn("settings.eventTimeout", text)

    def test_deterministic(self):
        self.assertEqual(render_tag_script(DEFAULT_TAG_CONFIGURATION),
                         render_tag_script(resolve_configuration({})))

    def test_different_configs_render_differently(self):
        self.assertNotEqual(render_tag_script(DEFAULT_TAG_CONFIGURATION),
                            render_tag_script(resolve_configuration({"debug": True})))


class TestScriptResource(unittest.TestCase):
    def test_path_from_file_not_name(self):
        res = script_resource(resolve_configuration({"name": "a.js", "file": "b.js"}))
        self.assertEqual(res.path, "/b.js")
        self.assertIn(b'"a.js"', res.body)

    def test_file_with_directory(self):
        res = script_resource(resolve_configuration({"file": "js/tag.js"}))
        self.assertEqual(res.path, "/js/tag.js")

    def test_far_future_caching(self):
        res = script_resource(DEFAULT_TAG_CONFIGURATION)
        self.assertEqual(res.headers["Cache-Control"], "public, max-age=31536000")
        self.assertEqual(res.headers["Content-Length"], str(len(res.body)))
        self.assertTrue(res.headers["ETag"].startswith('"'))

    def test_etag_tracks_content(self):
        a = script_resource(DEFAULT_TAG_CONFIGURATION)
        b = script_resource(resolve_configuration({"logging": True}))
        self.assertNotEqual(a.headers["ETag"], b.headers["ETag"])


if __name__ == "__main__":
    unittest.main()
