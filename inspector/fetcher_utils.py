"""
Redirect-Aware Fetcher

Retrieves a target page for the inspector proxy. Redirects are never followed
automatically: every hop is inspected, its Location is resolved against the
current URL, and the new host goes back through the Host Validator before it
is requested. One overall deadline covers the whole chain; when it expires the
in-flight response is closed and nothing is returned.
"""

import logging
import re
import socket
import threading
import time
from dataclasses import dataclass
from urllib.parse import urljoin

import requests
from bs4 import UnicodeDammit
from bs4.dammit import EncodingDetector
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from .errors import (
    FetchTimeoutError,
    InputError,
    NetworkError,
    ProtocolError,
    RedirectLoopError,
    UnsupportedContentError,
)
from .host_validator_utils import validate_public_host
from .utils import parse_target

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants (each overridable through Django settings)
# ---------------------------------------------------------------------------

# Maximum number of redirects followed before giving up.
MAX_REDIRECTS = 4

# Overall deadline in seconds for the whole chain (all hops + body).
FETCH_TIMEOUT = 15

# Largest body we are willing to rewrite and send back.
MAX_BODY_BYTES = 5_000_000

CHUNK_SIZE = 64 * 1024

USER_AGENT = "Mozilla/5.0 (compatible; PageInspector/1.0)"

ACCEPT = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"

CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.I)


@dataclass
class FetchResult:
    body: str
    final_url: str
    content_type: str
    hops: int = 0


# ---------------------------------------------------------------------------
# Deadline watchdog
# ---------------------------------------------------------------------------


class DeadlineWatchdog:
    """
    Cuts every connection a fetch opened once the overall deadline passes.

    requests only has per-read timeouts, so a target that trickles bytes
    could hold a hop open indefinitely. The watchdog remembers each socket
    opened through `WatchedAdapter` and, when its timer fires, shuts them
    down; the blocked read in the fetching thread then fails immediately.
    """

    def __init__(self):
        self.fired = False
        self._lock = threading.Lock()
        self._sockets = []
        self._timer = None

    def start(self, seconds):
        self._timer = threading.Timer(seconds, self.fire)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()

    def track(self, sock):
        with self._lock:
            fired = self.fired
            if not fired:
                self._sockets.append(sock)
        if fired:
            _shutdown(sock)

    def fire(self):
        with self._lock:
            self.fired = True
            sockets, self._sockets = self._sockets, []
        logger.debug("Fetch deadline reached, closing %d connection(s)", len(sockets))
        for sock in sockets:
            _shutdown(sock)


def _shutdown(sock):
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed by the connection pool.
        return


def _watched_pool(pool_cls, watchdog):
    """A connection pool class whose connections report their socket."""

    class WatchedConnection(pool_cls.ConnectionCls):
        def connect(self):
            super().connect()
            watchdog.track(self.sock)

    return type(pool_cls.__name__, (pool_cls,), {"ConnectionCls": WatchedConnection})


class WatchedAdapter(HTTPAdapter):
    """HTTPAdapter that registers every new connection with a watchdog."""

    def __init__(self, watchdog, **kwargs):
        self.watchdog = watchdog
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": _watched_pool(HTTPConnectionPool, self.watchdog),
            "https": _watched_pool(HTTPSConnectionPool, self.watchdog),
        }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def fetch_html(url, *, max_redirects=None, timeout=None, max_body_bytes=None, session=None):
    """
    Fetch `url`, chasing up to `max_redirects` redirects by hand.

    Every hop's host is validated with `validate_public_host` before it is
    requested. Returns a FetchResult for the final (non-redirect) response.

    When no `session` is passed, the call opens its own and arms a
    DeadlineWatchdog over it, so a hop still in flight at the deadline is
    cut off rather than left to finish. A caller-supplied session only gets
    the per-hop checks.

    Raises:
        InputError: the starting URL is not an absolute http(s) URL.
        SecurityBlockedError: any hop resolves to a private/reserved address.
        ProtocolError: a 3xx without Location, or a redirect to a non-http(s) URL.
        RedirectLoopError: more than `max_redirects` redirects.
        UnsupportedContentError: the final response is not text/html, or too large.
        FetchTimeoutError: the overall deadline expired.
        NetworkError: DNS or transport failure.
    """
    if max_redirects is None:
        max_redirects = getattr(settings, "INSPECTOR_MAX_REDIRECTS", MAX_REDIRECTS)
    if timeout is None:
        timeout = getattr(settings, "INSPECTOR_FETCH_TIMEOUT", FETCH_TIMEOUT)
    if max_body_bytes is None:
        max_body_bytes = getattr(settings, "INSPECTOR_MAX_BODY_BYTES", MAX_BODY_BYTES)

    target = parse_target(url)
    validate_public_host(target.hostname)

    deadline = time.monotonic() + timeout
    watchdog = DeadlineWatchdog()
    own_session = session is None
    if own_session:
        sess = requests.Session()
        adapter = WatchedAdapter(watchdog)
        sess.mount("http://", adapter)
        sess.mount("https://", adapter)
    else:
        sess = session
    watchdog.start(timeout)

    try:
        current_url = url
        hops = 0

        while True:
            resp = _request_hop(sess, current_url, deadline, timeout, watchdog)
            try:
                if 300 <= resp.status_code < 400:
                    location = (resp.headers.get("Location") or "").strip()
                    if not location:
                        raise ProtocolError(
                            f"Target returned {resp.status_code} without a Location header"
                        )
                    if hops >= max_redirects:
                        raise RedirectLoopError(
                            f"Too many redirects (more than {max_redirects})"
                        )

                    next_url = urljoin(current_url, location)
                    try:
                        next_target = parse_target(next_url)
                    except InputError:
                        raise ProtocolError("Target redirected to an unsupported URL")
                    validate_public_host(next_target.hostname)

                    hops += 1
                    logger.debug(
                        "Redirect hop %d: %s -> %s (%s)",
                        hops, current_url, next_url, resp.status_code,
                    )
                    current_url = next_url
                    continue

                content_type = resp.headers.get("Content-Type") or ""
                if "text/html" not in content_type.lower():
                    logger.warning(
                        "Rejected non-HTML target %s (%s)", current_url, content_type or "no content-type"
                    )
                    raise UnsupportedContentError("Target is not an HTML page")

                raw = _read_body(resp, deadline, timeout, max_body_bytes, watchdog)
            finally:
                resp.close()

            body = decode_body(raw, content_type)
            logger.info(
                "Fetched %s (%d redirects, %d bytes)", current_url, hops, len(raw)
            )
            return FetchResult(
                body=body,
                final_url=current_url,
                content_type=content_type,
                hops=hops,
            )
    finally:
        watchdog.cancel()
        if own_session:
            sess.close()


def decode_body(raw, content_type=""):
    """
    Decode a response body.

    The charset declared in the Content-Type header wins, then a <meta>
    charset inside the document, then strict UTF-8; anything else is left to
    BeautifulSoup's encoding detection, with UTF-8 plus replacement
    characters as the last resort.
    """
    match = CHARSET_RE.search(content_type or "")
    declared = match.group(1) if match else None
    if not declared:
        declared = EncodingDetector.find_declared_encoding(raw, is_html=True)

    if declared:
        try:
            return raw.decode(declared, errors="replace")
        except LookupError:
            logger.debug("Unknown charset %r, falling back to detection", declared)

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass

    dammit = UnicodeDammit(raw, is_html=True)
    if dammit.unicode_markup is not None:
        return dammit.unicode_markup
    return raw.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _remaining(deadline, timeout):
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise FetchTimeoutError(f"Request timed out after {timeout}s")
    return remaining


def _request_hop(sess, url, deadline, timeout, watchdog):
    """Issue one GET without following redirects; map requests errors."""
    remaining = _remaining(deadline, timeout)
    try:
        resp = sess.get(
            url,
            allow_redirects=False,
            timeout=(remaining, remaining),
            headers={
                "User-Agent": getattr(settings, "INSPECTOR_USER_AGENT", USER_AGENT),
                "Accept": ACCEPT,
            },
            stream=True,
        )
    except requests.exceptions.RequestException as exc:
        if watchdog.fired or isinstance(exc, requests.exceptions.Timeout):
            raise FetchTimeoutError(f"Request timed out after {timeout}s") from exc
        if isinstance(exc, requests.exceptions.SSLError):
            raise NetworkError(f"SSL/TLS error: {_truncate(str(exc), 200)}") from exc
        if isinstance(exc, requests.exceptions.ConnectionError):
            if time.monotonic() >= deadline:
                raise FetchTimeoutError(f"Request timed out after {timeout}s") from exc
            raise NetworkError(f"Connection error: {_truncate(str(exc), 200)}") from exc
        raise NetworkError(f"Request failed: {_truncate(str(exc), 200)}") from exc

    # Headers cut short by the watchdog can still parse as a response.
    if watchdog.fired:
        resp.close()
        raise FetchTimeoutError(f"Request timed out after {timeout}s")
    return resp


def _read_body(resp, deadline, timeout, max_body_bytes, watchdog):
    """Stream the body, enforcing the overall deadline and the size cap."""
    buf = bytearray()
    try:
        for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
            _remaining(deadline, timeout)
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) > max_body_bytes:
                raise UnsupportedContentError("Target page is too large")
    except requests.exceptions.RequestException as exc:
        if (
            watchdog.fired
            or isinstance(exc, requests.exceptions.Timeout)
            or time.monotonic() >= deadline
        ):
            raise FetchTimeoutError(f"Request timed out after {timeout}s") from exc
        raise NetworkError(f"Connection error: {_truncate(str(exc), 200)}") from exc
    # A connection cut by the watchdog can look like a clean end of body.
    if watchdog.fired:
        raise FetchTimeoutError(f"Request timed out after {timeout}s")
    return bytes(buf)


def _truncate(text, max_length):
    """Truncate a string and append '…' if it exceeds max_length."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"
