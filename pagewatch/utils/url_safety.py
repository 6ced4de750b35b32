"""Refuse URLs that point into private or internal networks."""

import asyncio
import ipaddress
import socket
from typing import Optional
from urllib.parse import urlsplit

from ..core.exceptions import UnsafeURLError


BLOCKED_HOSTNAMES = {
    'localhost',
    'metadata',
    'metadata.google',
    'metadata.google.internal',
}

BLOCKED_SUFFIXES = ('.local', '.internal', '.localhost')


def is_private_address(value: str) -> bool:
    """True for loopback, private, link-local, unspecified and unique-local addresses."""
    try:
        address = ipaddress.ip_address(value.split('%', 1)[0])
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def _check_static(url: str):
    """Checks that need no DNS. Returns (reason, hostname)."""
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or '').lower()
    except ValueError:
        return "Invalid URL format", None

    if parts.scheme not in ('http', 'https'):
        return "Only http and https URLs are allowed", None
    if not hostname:
        return "Invalid URL format", None
    if hostname in BLOCKED_HOSTNAMES:
        return "This hostname is not allowed", None
    if hostname.endswith(BLOCKED_SUFFIXES):
        return "Internal hostnames are not allowed", None
    if is_private_address(hostname):
        return "Private or internal IP addresses are not allowed", None
    return None, hostname


async def check_url(url: str, resolve: bool = True) -> Optional[str]:
    """
    Validate a URL for outbound fetching.

    Args:
        url: URL to validate
        resolve: Also resolve the hostname and check every address

    Returns:
        Human readable reason the URL is refused, or None if it is allowed
    """
    reason, hostname = _check_static(url)
    if reason or not resolve:
        return reason

    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass

    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError):
        return "Could not resolve hostname"

    if not infos:
        return "Could not resolve hostname"
    for info in infos:
        if is_private_address(info[4][0]):
            return "This URL resolves to a private or internal address"
    return None


async def ensure_public_url(url: str, resolve: bool = True) -> None:
    """Raise UnsafeURLError unless the URL is safe to fetch."""
    reason = await check_url(url, resolve=resolve)
    if reason:
        raise UnsafeURLError(f"SSRF blocked: {reason}")
