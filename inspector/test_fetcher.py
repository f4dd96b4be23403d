import os
import socket
import socketserver
import threading
import time
from unittest.mock import MagicMock, call, patch

import requests
from django.test import SimpleTestCase, override_settings

from .errors import (
    FetchTimeoutError,
    InputError,
    NetworkError,
    ProtocolError,
    RedirectLoopError,
    SecurityBlockedError,
    UnsupportedContentError,
)
from .fetcher_utils import USER_AGENT, DeadlineWatchdog, decode_body, fetch_html


def _response(status=200, headers=None, body=b"<html><body>ok</body></html>"):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers if headers is not None else {"Content-Type": "text/html; charset=utf-8"}
    resp.iter_content.return_value = [body]
    return resp


def _redirect(location, status=302):
    return _response(status=status, headers={"Location": location}, body=b"")


def _session(*responses):
    sess = MagicMock()
    sess.get.side_effect = list(responses)
    return sess


@override_settings(
    INSPECTOR_MAX_REDIRECTS=4,
    INSPECTOR_FETCH_TIMEOUT=15,
    INSPECTOR_USER_AGENT=USER_AGENT,
)
@patch("inspector.fetcher_utils.validate_public_host")
class FetchHtmlTests(SimpleTestCase):
    """Tests for the manual redirect loop, content checks and error mapping."""

    def test_no_redirects(self, mock_validate):
        sess = _session(_response())

        result = fetch_html("https://example.com/", session=sess)

        self.assertEqual(result.body, "<html><body>ok</body></html>")
        self.assertEqual(result.final_url, "https://example.com/")
        self.assertEqual(result.hops, 0)
        self.assertIn("text/html", result.content_type)
        mock_validate.assert_called_once_with("example.com")

        _args, kwargs = sess.get.call_args
        self.assertFalse(kwargs["allow_redirects"])
        self.assertEqual(kwargs["headers"]["User-Agent"], USER_AGENT)

    def test_max_redirects_succeed(self, mock_validate):
        responses = [_redirect(f"https://example.com/step{i + 1}") for i in range(4)]
        sess = _session(*responses, _response())

        result = fetch_html("https://example.com/step0", session=sess)

        self.assertEqual(result.hops, 4)
        self.assertEqual(result.final_url, "https://example.com/step4")
        self.assertEqual(sess.get.call_count, 5)

    def test_one_redirect_too_many_is_a_loop(self, mock_validate):
        responses = [_redirect(f"https://example.com/step{i + 1}") for i in range(5)]
        sess = _session(*responses, _response())

        with self.assertRaises(RedirectLoopError):
            fetch_html("https://example.com/step0", session=sess)
        self.assertEqual(sess.get.call_count, 5)

    def test_every_hop_is_revalidated(self, mock_validate):
        sess = _session(
            _redirect("https://cdn.example.net/a", status=301),
            _redirect("https://www.example.org/b", status=307),
            _response(),
        )

        fetch_html("https://example.com/", session=sess)

        self.assertEqual(
            mock_validate.call_args_list,
            [call("example.com"), call("cdn.example.net"), call("www.example.org")],
        )

    def test_private_intermediate_hop_is_blocked(self, mock_validate):
        def _validate(host):
            if host == "internal.example":
                raise SecurityBlockedError("Blocked private/localhost targets")
            return []

        mock_validate.side_effect = _validate
        sess = _session(
            _redirect("http://internal.example/admin"),
            _redirect("https://public.example/final"),
            _response(),
        )

        with self.assertRaises(SecurityBlockedError):
            fetch_html("https://example.com/", session=sess)
        # The private hop is never requested.
        self.assertEqual(sess.get.call_count, 1)

    def test_relative_location_is_resolved(self, mock_validate):
        sess = _session(_redirect("/landing"), _redirect("next"), _response())

        result = fetch_html("https://example.com/a/b", session=sess)

        self.assertEqual(result.final_url, "https://example.com/next")
        requested = [c.args[0] for c in sess.get.call_args_list]
        self.assertEqual(
            requested,
            ["https://example.com/a/b", "https://example.com/landing", "https://example.com/next"],
        )

    def test_redirect_without_location_is_protocol_error(self, mock_validate):
        sess = _session(_response(status=302, headers={}, body=b""))
        with self.assertRaises(ProtocolError):
            fetch_html("https://example.com/", session=sess)

    def test_redirect_to_other_scheme_is_protocol_error(self, mock_validate):
        sess = _session(_redirect("ftp://example.com/file"))
        with self.assertRaises(ProtocolError):
            fetch_html("https://example.com/", session=sess)

    def test_non_html_is_rejected(self, mock_validate):
        sess = _session(_response(headers={"Content-Type": "application/pdf"}, body=b"%PDF"))
        with self.assertRaises(UnsupportedContentError) as ctx:
            fetch_html("https://example.com/file.pdf", session=sess)
        self.assertEqual(ctx.exception.message, "Target is not an HTML page")

    def test_missing_content_type_is_rejected(self, mock_validate):
        sess = _session(_response(headers={}))
        with self.assertRaises(UnsupportedContentError):
            fetch_html("https://example.com/", session=sess)

    def test_oversized_body_is_rejected(self, mock_validate):
        sess = _session(_response(body=b"x" * 100))
        with self.assertRaises(UnsupportedContentError):
            fetch_html("https://example.com/", session=sess, max_body_bytes=10)

    def test_requests_timeout_maps_to_fetch_timeout(self, mock_validate):
        sess = MagicMock()
        sess.get.side_effect = requests.exceptions.ReadTimeout("slow")
        with self.assertRaises(FetchTimeoutError):
            fetch_html("https://example.com/", session=sess)

    def test_connection_error_maps_to_network_error(self, mock_validate):
        sess = MagicMock()
        sess.get.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(NetworkError):
            fetch_html("https://example.com/", session=sess)

    @patch("inspector.fetcher_utils.time")
    def test_deadline_spans_the_whole_chain(self, mock_time, mock_validate):
        # Start, first hop, second hop (after the deadline).
        mock_time.monotonic.side_effect = [0.0, 1.0, 100.0, 100.0]
        first = _redirect("https://example.com/next")
        sess = _session(first, _response())

        with self.assertRaises(FetchTimeoutError):
            fetch_html("https://example.com/", session=sess, timeout=15)

        self.assertEqual(sess.get.call_count, 1)
        first.close.assert_called_once()

    def test_invalid_start_url_is_input_error(self, mock_validate):
        with self.assertRaises(InputError):
            fetch_html("ftp://example.com/", session=MagicMock())
        mock_validate.assert_not_called()

    def test_own_session_is_closed(self, mock_validate):
        with patch("inspector.fetcher_utils.requests.Session") as mock_session_cls:
            sess = mock_session_cls.return_value
            sess.get.side_effect = [_response()]
            fetch_html("https://example.com/")
            sess.close.assert_called_once()


class DecodeBodyTests(SimpleTestCase):
    def test_declared_charset_wins(self):
        self.assertEqual(decode_body(b"caf\xe9", "text/html; charset=iso-8859-1"), "café")

    def test_utf8_without_declaration(self):
        self.assertEqual(decode_body("café".encode("utf-8"), "text/html"), "café")


class _TrickleHandler(socketserver.BaseRequestHandler):
    """Answers one request, sending `payload` one byte every `interval` seconds."""

    preamble = b""
    payload = b""
    interval = 0.1

    def handle(self):
        self.request.recv(65536)
        try:
            self.request.sendall(self.preamble)
            for i in range(len(self.payload)):
                self.request.sendall(self.payload[i:i + 1])
                time.sleep(self.interval)
        except OSError:
            return


class _SlowBodyHandler(_TrickleHandler):
    preamble = b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nContent-Length: 40\r\n\r\n"
    payload = b"x" * 40


class _SlowHeadersHandler(_TrickleHandler):
    preamble = b"HTTP/1.1 200 OK\r\n"
    payload = b"X-Slow: " + b"a" * 40 + b"\r\n\r\n"


@patch.dict(os.environ, {"NO_PROXY": "127.0.0.1,localhost", "no_proxy": "127.0.0.1,localhost"})
@patch("inspector.fetcher_utils.validate_public_host")
class InFlightDeadlineTests(SimpleTestCase):
    """The overall deadline cuts off a hop that is still receiving bytes."""

    def _serve(self, handler):
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), handler)
        server.daemon_threads = True
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        self.addCleanup(server.server_close)
        self.addCleanup(server.shutdown)
        return f"http://127.0.0.1:{server.server_address[1]}/"

    def _assert_cut_off(self, url):
        started = time.monotonic()
        with self.assertRaises(FetchTimeoutError):
            fetch_html(url, timeout=0.5)
        self.assertLess(time.monotonic() - started, 2.0)

    def test_trickled_body(self, mock_validate):
        self._assert_cut_off(self._serve(_SlowBodyHandler))

    def test_trickled_headers(self, mock_validate):
        self._assert_cut_off(self._serve(_SlowHeadersHandler))

    def test_watchdog_shuts_down_tracked_sockets(self, mock_validate):
        watchdog = DeadlineWatchdog()
        sock = MagicMock()
        watchdog.track(sock)
        watchdog.fire()

        sock.shutdown.assert_called_once_with(socket.SHUT_RDWR)
        self.assertTrue(watchdog.fired)

        # A connection opened after the deadline is cut straight away.
        late = MagicMock()
        watchdog.track(late)
        late.shutdown.assert_called_once_with(socket.SHUT_RDWR)
