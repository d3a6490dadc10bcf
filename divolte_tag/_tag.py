"""The tag: one instance per page load.

State machine::

    IDLE ──page_ready() [autoPageViewEvent]──▶ PAGE_VIEW_SENT
      │                                           │
      └──────────────unload()─────────▶ UNLOADED ◀┘

Custom events (signal()) may be emitted from IDLE or PAGE_VIEW_SENT.
When auto page view is enabled and the page is not ready yet, custom
beacons are held and dispatched immediately after the page-view beacon,
so the page view is always the first beacon of the page.  unload()
drops anything still held; delivery is at-most-once.

Sending is fire-and-forget.  A transport is any callable taking the
encoded query string; whatever it raises is logged and discarded, never
passed back to the code that emitted the event.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

import requests

from ._config import TagConfiguration
from ._constants import EVENT_PATH
from ._encoder import (
    NO_MEASUREMENTS,
    EventParameters,
    Measurements,
    NonceSource,
    custom_event_beacon,
    encode_beacon,
    page_view_beacon,
)

logger = logging.getLogger(__name__)

Transport = Callable[[str], None]


class TagState(enum.Enum):
    IDLE = "idle"
    PAGE_VIEW_SENT = "page_view_sent"
    UNLOADED = "unloaded"


def _no_measurements() -> Measurements:
    return NO_MEASUREMENTS


@dataclass(frozen=True)
class Page:
    """What the tag can observe about the page it runs on.

    ``measure`` stands in for reading window.innerWidth/screen.width and
    friends; it may be slow or fail, which is why the tag bounds it.
    """

    location: str
    referrer: str = ""
    measure: Callable[[], Measurements] = field(default=_no_measurements)


def measure_within(measure: Callable[[], Measurements], timeout: timedelta) -> Measurements:
    """Run measure() for at most ``timeout``.

    On timeout or failure the result is NO_MEASUREMENTS, which makes the
    encoder omit w/h/i/j.  The measuring thread is a daemon and is left
    to finish (or not) on its own.
    """
    result: List[Measurements] = []

    def run() -> None:
        try:
            result.append(measure())
        except Exception:
            logger.debug("measurement failed", exc_info=True)

    worker = threading.Thread(target=run, name="divolte-tag-measure", daemon=True)
    worker.start()
    worker.join(timeout.total_seconds())
    if not result:
        if worker.is_alive():
            logger.debug("measurement exceeded %s; sending without sizes", timeout)
        return NO_MEASUREMENTS
    return result[0]


# ── Transports ───────────────────────────────────────────────

class RecordingTransport:
    """Keeps every query string in memory, in dispatch order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queries: List[str] = []

    def __call__(self, query: str) -> None:
        with self._lock:
            self._queries.append(query)

    @property
    def queries(self) -> List[str]:
        with self._lock:
            return list(self._queries)


class HttpTransport:
    """Fire-and-forget GET beacons to ``<base_url>/event``.

    Requests run on a small worker pool so the caller never waits on the
    network.  Failures are logged at debug level and otherwise dropped;
    there is no retry.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        max_workers: int = 4,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="divolte-tag-send")

    def __call__(self, query: str) -> None:
        self._pool.submit(self._get, "{}{}?{}".format(self.base_url, EVENT_PATH, query))

    def _get(self, url: str) -> None:
        try:
            resp = self._session.get(url, timeout=self.timeout)
            if resp.status_code >= 400:
                logger.debug("beacon rejected with HTTP %d: %s", resp.status_code, url)
        except requests.RequestException as e:
            logger.debug("beacon send failed: %s (%s)", url, e)

    def close(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
        self._session.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ── The tag ──────────────────────────────────────────────────

class Tag:
    def __init__(
        self,
        config: TagConfiguration,
        page: Page,
        transport: Transport,
        nonces: Optional[NonceSource] = None,
    ) -> None:
        self.config = config
        self.page = page
        self._transport = transport
        self._nonces = nonces or NonceSource()
        self._lock = threading.Lock()
        self._state = TagState.IDLE
        self._held: List[str] = []

    @property
    def state(self) -> TagState:
        return self._state

    def _measure(self) -> Measurements:
        m = measure_within(self.page.measure, self.config.event_timeout)
        if self.config.debug:
            logger.debug("[%s] measurements: %s", self.config.name, m)
        return m

    def _dispatch(self, query: str) -> None:
        if self.config.logging:
            logger.info("[%s] beacon: %s", self.config.name, query)
        try:
            self._transport(query)
        except Exception:
            logger.debug("[%s] transport failed", self.config.name, exc_info=True)

    def page_ready(self) -> Optional[str]:
        """Handle page readiness.  Returns the page-view query, if one was sent."""
        if not self.config.auto_page_view_event:
            return None
        # Measure before taking the lock: signal() must not wait on it.
        measurements = self._measure()
        with self._lock:
            if self._state is not TagState.IDLE:
                return None
            query = encode_beacon(page_view_beacon(
                self.page.location, self.page.referrer, measurements, self._nonces.next(),
            ))
            self._dispatch(query)
            self._state = TagState.PAGE_VIEW_SENT
            held, self._held = self._held, []
            for q in held:
                self._dispatch(q)
        return query

    def signal(self, event_type: str, parameters: Optional[EventParameters] = None) -> Optional[str]:
        """Emit a custom event.  Returns the encoded query, or None once unloaded."""
        measurements = self._measure()
        with self._lock:
            if self._state is TagState.UNLOADED:
                return None
            query = encode_beacon(custom_event_beacon(
                self.page.location, self.page.referrer, measurements, self._nonces.next(),
                event_type, parameters,
            ))
            if self._state is TagState.IDLE and self.config.auto_page_view_event:
                if self.config.debug:
                    logger.debug("[%s] holding %r until page view", self.config.name, event_type)
                self._held.append(query)
            else:
                self._dispatch(query)
        return query

    def unload(self) -> None:
        with self._lock:
            if self._held and self.config.debug:
                logger.debug("[%s] dropping %d held beacon(s) on unload", self.config.name, len(self._held))
            self._held = []
            self._state = TagState.UNLOADED
