"""
Error kinds raised by the inspect-a-page pipeline.

Every error is terminal for the request that raised it. Each carries the HTTP
status the retrieval endpoint answers with and a message that is safe to show
to the user (server-side failures are logged in full but answered with a
generic message by the view).
"""


class InspectorError(Exception):
    """Base class for intentional, user-facing pipeline failures."""

    status_code = 500

    def __init__(self, message, *, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def is_client_error(self):
        return 400 <= self.status_code < 500


# ── 400-class ────────────────────────────────────────────────────────────────

class InputError(InspectorError):
    """Missing, malformed or non-http(s) target URL."""

    status_code = 400


class SecurityBlockedError(InspectorError):
    """The target (or a redirect hop) resolves to a private/reserved address."""

    status_code = 400


class RedirectLoopError(InspectorError):
    """More redirects than the configured maximum."""

    status_code = 400


class ProtocolError(InspectorError):
    """A malformed redirect response (3xx without Location, bad scheme)."""

    status_code = 400


# ── 415 ──────────────────────────────────────────────────────────────────────

class UnsupportedContentError(InspectorError):
    """The final response is not an HTML page (or is too large to proxy)."""

    status_code = 415


# ── 500-class ────────────────────────────────────────────────────────────────

class FetchTimeoutError(InspectorError):
    """The overall fetch deadline expired."""

    status_code = 500


class NetworkError(InspectorError):
    """DNS resolution or transport failure."""

    status_code = 500
