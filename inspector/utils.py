from urllib.parse import urlparse

from .errors import InputError

ALLOWED_SCHEMES = ("http", "https")


# Used by forms that accept URLs.
def normalize_url(url):
    """
    Ensures that a URL has a scheme.

    - Strips surrounding whitespace.
    - If no scheme separator is present, 'https://' is prepended, so
      "example.com/page" becomes "https://example.com/page".
    - URLs that already carry a scheme (even a disallowed one, such as
      "ftp://") are returned unchanged so the scheme check can reject them.

    Args:
        url (str): The URL to normalize.

    Returns:
        str: The normalized URL.
    """
    url = (url or "").strip()
    if url and "://" not in url:
        url = f"https://{url}"
    return url


def parse_target(url):
    """
    Parse and check a target URL.

    Returns the `urllib.parse.ParseResult` when the URL is absolute, uses
    http/https and has a hostname. Raises InputError otherwise.
    """
    try:
        parsed = urlparse(url)
        # Accessing .port validates the port component.
        parsed.port
    except (ValueError, TypeError, AttributeError):
        raise InputError("Invalid URL")

    if not parsed.scheme:
        raise InputError("Invalid URL")
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise InputError("Only http/https allowed")
    if not parsed.hostname:
        raise InputError("Invalid URL")
    return parsed
