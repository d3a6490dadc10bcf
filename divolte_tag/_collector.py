"""A stub collector: receives beacons and serves the tag script.

This is the minimal HTTP counterpart of the tag, enough to exercise the
protocol end to end (integration tests, ``divolte-tag serve``).  Routes:

    GET /event?<beacon>   decode; 200 + 1x1 GIF, or 400 + JSON error
    GET /<file>           the tag script, far-future cached

Each request is handled on its own thread and decoded independently; a
rejected beacon has no effect on any other request.
"""

from __future__ import annotations

import base64
import json
import logging
import queue
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional, Tuple
from urllib.parse import urlsplit

from ._config import DEFAULT_TAG_CONFIGURATION, TagConfiguration
from ._constants import EVENT_PATH
from ._decoder import DecodedBeacon, decode_beacon
from ._errors import TagError
from ._script import ScriptResource, script_resource

logger = logging.getLogger(__name__)

# 1x1 transparent GIF, the conventional beacon response body.
PIXEL_GIF_BYTES = base64.b64decode(b"R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

# Beacons kept for next_beacon() when nobody else consumes them.
MAX_QUEUED_BEACONS = 10_000


class _Handler(BaseHTTPRequestHandler):
    server_version = "DivolteTag/1.0"

    @property
    def collector(self) -> "Collector":
        return getattr(self.server, "collector")  # type: ignore[no-any-return]

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def _respond(self, status: int, body: bytes, headers: dict) -> None:
        self.send_response(status)
        for k, v in headers.items():
            self.send_header(k, v)
        if "Content-Length" not in headers:
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _json_error(self, status: int, code: str, message: str) -> None:
        body = json.dumps({"error": code, "message": message}, separators=(",", ":")).encode("utf-8")
        self._respond(status, body, {
            "Content-Type": "application/json; charset=utf-8",
            "Cache-Control": "no-store",
        })

    def _handle_event(self, query: str) -> None:
        try:
            beacon = decode_beacon(query)
        except TagError as e:
            logger.info("rejected beacon [%s]: %s", e.code, e)
            self._json_error(400, e.code, str(e))
            return
        self.collector._accept(beacon)
        self._respond(200, PIXEL_GIF_BYTES, {
            "Content-Type": "image/gif",
            "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
            "Pragma": "no-cache",
        })

    def do_GET(self) -> None:  # noqa: N802
        u = urlsplit(self.path)
        if u.path == EVENT_PATH:
            self._handle_event(u.query)
            return
        script = self.collector.script
        if u.path == script.path:
            self._respond(200, script.body, script.headers)
            return
        self._json_error(404, "ERR_NOT_FOUND", "no route for {}".format(u.path))


class _Server(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address: Tuple[str, int], collector: "Collector") -> None:
        super().__init__(server_address, _Handler)
        self.collector = collector


class Collector:
    """Local beacon receiver.

    Port 0 picks a free port; the bound address is available as
    ``base_url`` once started.  Decoded beacons go to ``on_beacon`` when
    one is given.  Otherwise they are queued in arrival order for
    ``next_beacon()``, keeping at most ``max_queued`` of the newest.
    """

    def __init__(
        self,
        config: TagConfiguration = DEFAULT_TAG_CONFIGURATION,
        host: str = "127.0.0.1",
        port: int = 0,
        on_beacon: Optional[Callable[[DecodedBeacon], None]] = None,
        max_queued: int = MAX_QUEUED_BEACONS,
    ) -> None:
        self.config = config
        self.script: ScriptResource = script_resource(config)
        self._address = (host, port)
        self._on_beacon = on_beacon
        if max_queued < 1:
            raise ValueError("max_queued must be at least 1")
        self._beacons: "queue.Queue[DecodedBeacon]" = queue.Queue(maxsize=max_queued)
        self._queue_lock = threading.Lock()
        self._httpd: Optional[_Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def base_url(self) -> str:
        if self._httpd is None:
            raise RuntimeError("collector is not running")
        host, port = self._httpd.server_address[:2]
        return "http://{}:{}".format(host, port)

    def _accept(self, beacon: DecodedBeacon) -> None:
        logger.debug("accepted beacon: %s", beacon.as_dict())
        if self._on_beacon is not None:
            self._on_beacon(beacon)
            return
        with self._queue_lock:
            if self._beacons.full():
                try:
                    self._beacons.get_nowait()
                    logger.debug("beacon queue full; dropped the oldest")
                except queue.Empty:
                    pass  # a reader drained it meanwhile
            self._beacons.put_nowait(beacon)

    def next_beacon(self, timeout: float = 10.0) -> DecodedBeacon:
        """Block until the next beacon arrives.  Raises queue.Empty on timeout."""
        return self._beacons.get(timeout=timeout)

    def start(self) -> "Collector":
        self._httpd = _Server(self._address, self)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="divolte-tag-collector", daemon=True,
        )
        self._thread.start()
        logger.info("collector listening on %s (script at %s)", self.base_url, self.script.path)
        return self

    def serve_forever(self) -> None:
        """Run in the calling thread until interrupted."""
        self._httpd = _Server(self._address, self)
        logger.info("collector listening on %s (script at %s)", self.base_url, self.script.path)
        try:
            self._httpd.serve_forever()
        finally:
            self._httpd.server_close()
            self._httpd = None

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join()
        self._httpd = None
        self._thread = None

    def __enter__(self) -> "Collector":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.stop()
