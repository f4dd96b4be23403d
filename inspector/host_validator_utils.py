"""
Host Validator

Decides whether a hostname may be fetched from this server. The hostname is
resolved to every address it maps to (IPv4 and IPv6) and the request is
refused if *any* of those addresses is loopback, private, link-local, shared
(CGNAT) or otherwise reserved. Resolution failure is an error, never "safe".

Nothing is cached: callers re-run the check for every redirect hop because a
public URL can redirect to a private one.
"""

import ipaddress
import logging
import socket

from .errors import InputError, NetworkError, SecurityBlockedError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BLOCKED_MESSAGE = "Blocked private/localhost targets"

BLOCKED_IPV4_NETWORKS = tuple(
    ipaddress.IPv4Network(cidr)
    for cidr in (
        "0.0.0.0/8",        # "this" network
        "10.0.0.0/8",       # private
        "100.64.0.0/10",    # shared address space (CGNAT)
        "127.0.0.0/8",      # loopback
        "169.254.0.0/16",   # link-local
        "172.16.0.0/12",    # private
        "192.168.0.0/16",   # private
    )
)

BLOCKED_IPV6_NETWORKS = tuple(
    ipaddress.IPv6Network(cidr)
    for cidr in (
        "::1/128",          # loopback
        "::/128",           # unspecified
        "fc00::/7",         # unique-local
        "fe80::/10",        # link-local
    )
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_address(raw):
    """
    Parse a textual address as returned by getaddrinfo.

    IPv6 zone ids ("fe80::1%eth0") are dropped and IPv4-mapped IPv6 addresses
    ("::ffff:10.0.0.1") are unwrapped to plain IPv4 so they are classified by
    the IPv4 rules.
    """
    addr = ipaddress.ip_address(str(raw).split("%", 1)[0])
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def is_blocked_address(addr):
    """Return True when `addr` falls in a private/reserved range."""
    if not isinstance(addr, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = parse_address(addr)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped

    if isinstance(addr, ipaddress.IPv4Address):
        return any(addr in net for net in BLOCKED_IPV4_NETWORKS)
    return any(addr in net for net in BLOCKED_IPV6_NETWORKS)


def resolve_host_addresses(hostname):
    """
    Resolve `hostname` to every address it maps to, in resolver order and
    without duplicates.

    Raises NetworkError if resolution fails or yields nothing.
    """
    try:
        infos = socket.getaddrinfo(
            hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM
        )
    except (socket.gaierror, UnicodeError, OSError) as exc:
        raise NetworkError(f"DNS lookup failed for {hostname}: {exc}") from exc

    addresses = []
    for family, _type, _proto, _canon, sockaddr in infos:
        if family not in (socket.AF_INET, socket.AF_INET6):
            continue
        try:
            addr = parse_address(sockaddr[0])
        except ValueError:
            continue
        if addr not in addresses:
            addresses.append(addr)

    if not addresses:
        raise NetworkError(f"DNS lookup returned no addresses for {hostname}.")
    return addresses


def validate_public_host(hostname):
    """
    Validate that every address `hostname` resolves to is public.

    Returns the resolved address list on success. Raises InputError for an
    empty hostname, NetworkError when resolution fails, and
    SecurityBlockedError when any address is private/reserved.
    """
    host = (hostname or "").strip().strip("[]").rstrip(".").lower()
    if not host:
        raise InputError("Invalid URL")

    addresses = resolve_host_addresses(host)
    blocked = [addr for addr in addresses if is_blocked_address(addr)]
    if blocked:
        logger.warning(
            "Blocked target host %s (resolves to %s)",
            host,
            ", ".join(str(a) for a in blocked),
        )
        raise SecurityBlockedError(BLOCKED_MESSAGE)

    return addresses
