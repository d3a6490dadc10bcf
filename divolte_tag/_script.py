"""The served tag script.

The serving layer asks for one thing: given a configuration, the bytes to
serve under ``"/" + config.file``, cacheable far into the future.  The
script identifies itself by ``config.name``; the path it is served under
and the name it reports are deliberately separate fields.

The JavaScript below speaks the same wire format as _encoder.py: same
codes, same order, referrer always present, sizes omitted when unknown.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Dict

from ._config import TagConfiguration
from ._constants import (
    EVENT_PATH,
    PARAM_EVENT_TYPE,
    PARAM_LOCATION,
    PARAM_NONCE,
    PARAM_REFERRER,
    PARAM_SCREEN_HEIGHT,
    PARAM_SCREEN_WIDTH,
    PARAM_VIEWPORT_HEIGHT,
    PARAM_VIEWPORT_WIDTH,
    SCRIPT_CONTENT_TYPE,
    SCRIPT_MAX_AGE_SECONDS,
)
from ._duration import duration_millis

# %(...)s placeholders are filled with JSON literals only.
_TEMPLATE = """\
/* %(name)s */
(function (window, document) {
  "use strict";
  var settings = {
    name: %(name_js)s,
    logging: %(logging)s,
    debug: %(debug)s,
    autoPageViewEvent: %(auto_page_view_event)s,
    eventTimeout: %(event_timeout_ms)d
  };
  var prefix = Math.random().toString(16).slice(2, 14);
  var counter = 0;
  var log = function (msg) {
    if (settings.logging && window.console) { window.console.log("[" + settings.name + "] " + msg); }
  };
  // Beacons go to the origin that served this script, whatever its path.
  var endpoint = (function () {
    var script = document.currentScript;
    var origin = window.location.origin;
    if (script && script.src) {
      try { origin = new URL(script.src, window.location.href).origin; } catch (e) { log("bad script URL: " + e); }
    }
    return origin + %(event_path)s;
  })();
  var positive = function (n) { return typeof n === "number" && n > 0 ? String(Math.floor(n)) : null; };
  var measure = function () {
    return [
      [%(w)s, positive(window.innerWidth)],
      [%(h)s, positive(window.innerHeight)],
      [%(i)s, positive(window.screen && window.screen.width)],
      [%(j)s, positive(window.screen && window.screen.height)]
    ];
  };
  var send = function (eventType, params, sizes) {
    var q = [[%(r)s, document.referrer || ""], [%(l)s, window.location.href]];
    for (var s = 0; s < sizes.length; s++) { if (sizes[s][1] !== null) { q.push(sizes[s]); } }
    q.push([%(n)s, prefix + (counter++).toString(16)]);
    if (eventType) {
      q.push([%(t)s, eventType]);
      for (var k in params) {
        if (Object.prototype.hasOwnProperty.call(params, k)) {
          q.push([%(t)s + "." + k, params[k] == null ? "" : String(params[k])]);
        }
      }
    }
    var parts = [];
    for (var p = 0; p < q.length; p++) {
      parts.push(encodeURIComponent(q[p][0]) + "=" + encodeURIComponent(q[p][1]));
    }
    var url = endpoint + "?" + parts.join("&");
    log(url);
    try { new Image().src = url; } catch (e) { if (settings.debug) { log("send failed: " + e); } }
  };
  var pageViewSent = !settings.autoPageViewEvent;
  var held = [];
  window.divolte = {
    signal: function (eventType, params) {
      var sizes = measure();
      if (!pageViewSent) { held.push([eventType, params || {}, sizes]); return; }
      send(eventType, params || {}, sizes);
    }
  };
  var pageView = function () {
    if (pageViewSent) { return; }
    var done = false;
    var timer = null;
    var fire = function (sizes) {
      if (done) { return; }
      done = true;
      window.clearTimeout(timer);
      if (settings.debug && !sizes.length) { log("measurement exceeded " + settings.eventTimeout + "ms"); }
      send(null, {}, sizes);
      pageViewSent = true;
      for (var h = 0; h < held.length; h++) { send(held[h][0], held[h][1], held[h][2]); }
      held = [];
    };
    // Measure after layout; fall back to sending without sizes after eventTimeout.
    var later = window.requestAnimationFrame
      ? window.requestAnimationFrame.bind(window)
      : function (f) { return window.setTimeout(f, 0); };
    timer = window.setTimeout(function () { fire([]); }, settings.eventTimeout);
    later(function () { fire(measure()); });
  };
  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", pageView);
  } else {
    pageView();
  }
})(window, document);
"""


def render_tag_script(config: TagConfiguration) -> bytes:
    """Script bytes for ``config``; identical configurations render identically."""
    js = json.dumps
    text = _TEMPLATE % {
        "name": config.name.replace("*/", ""),
        "name_js": js(config.name),
        "logging": js(config.logging),
        "debug": js(config.debug),
        "auto_page_view_event": js(config.auto_page_view_event),
        "event_timeout_ms": duration_millis(config.event_timeout),
        "event_path": js(EVENT_PATH),
        "r": js(PARAM_REFERRER),
        "l": js(PARAM_LOCATION),
        "w": js(PARAM_VIEWPORT_WIDTH),
        "h": js(PARAM_VIEWPORT_HEIGHT),
        "i": js(PARAM_SCREEN_WIDTH),
        "j": js(PARAM_SCREEN_HEIGHT),
        "n": js(PARAM_NONCE),
        "t": js(PARAM_EVENT_TYPE),
    }
    return text.encode("utf-8")


@dataclass(frozen=True)
class ScriptResource:
    path: str
    body: bytes
    headers: Dict[str, str]


def script_resource(config: TagConfiguration) -> ScriptResource:
    """The script with the headers to serve it under, far-future cached."""
    body = render_tag_script(config)
    etag = '"{}"'.format(hashlib.sha256(body).hexdigest()[:32])
    headers = {
        "Content-Type": SCRIPT_CONTENT_TYPE,
        "Content-Length": str(len(body)),
        "Cache-Control": "public, max-age={}".format(SCRIPT_MAX_AGE_SECONDS),
        "ETag": etag,
    }
    return ScriptResource(path="/" + config.file.lstrip("/"), body=body, headers=headers)
