"""
URL Validator - Keep the proxy from being pointed at internal hosts.

A gateway that fetches arbitrary caller-supplied URLs must not become a way
to reach loopback services, cloud metadata endpoints or private networks.
"""

import ipaddress
import socket
from urllib.parse import urlsplit

from .exceptions import ValidationError


class SSRFError(ValidationError):
    """Raised when a URL fails SSRF validation."""

    default_message = "The target URL is not allowed"


BLOCKED_IP_RANGES = [
    ipaddress.ip_network(cidr)
    for cidr in (
        # IPv4: unspecified, private, carrier-grade NAT, loopback, link-local, broadcast
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "255.255.255.255/32",
        # IPv6: unspecified, loopback, unique-local, link-local
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
]

BLOCKED_HOSTNAMES = frozenset({
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata",
    "metadata.google.internal",
    "kubernetes.default",
    "kubernetes.default.svc",
})

BLOCKED_SUFFIXES = (".local", ".internal", ".localhost")

ALLOWED_SCHEMES = frozenset({"http", "https"})


def is_ip_blocked(ip_str: str) -> bool:
    """True if ip_str is an address inside a blocked range."""
    try:
        address = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    if address.version == 6 and address.ipv4_mapped:
        address = address.ipv4_mapped
    return any(
        address in network
        for network in BLOCKED_IP_RANGES
        if network.version == address.version
    )


def _check_literal_address(hostname: str) -> bool:
    """Reject blocked IP literals. Returns True if hostname was an IP literal."""
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    if is_ip_blocked(str(address)):
        raise SSRFError(f"Access to IP address '{address}' is not allowed")
    return True


def _check_resolved_addresses(hostname: str, port: int) -> None:
    try:
        results = socket.getaddrinfo(hostname, port, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError):
        # Unresolvable hosts fail at fetch time as unreachable
        return
    for *_, sockaddr in results:
        if is_ip_blocked(sockaddr[0]):
            raise SSRFError(
                f"Hostname '{hostname}' resolves to blocked IP address '{sockaddr[0]}'"
            )


def validate_url(url: str, resolve_dns: bool = True) -> str:
    """
    Validate a target URL before the proxy fetches it.

    Args:
        url: Absolute target URL
        resolve_dns: Also resolve the hostname and check every address it maps to

    Returns:
        The URL, unchanged

    Raises:
        SSRFError: If the URL is malformed or points somewhere internal
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise SSRFError(f"Invalid URL format: {e}")

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise SSRFError(f"URL scheme '{parts.scheme}' is not allowed. Use http or https.")
    if not parts.hostname:
        raise SSRFError("URL must include a hostname")

    hostname = parts.hostname.lower().rstrip(".")
    if hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_SUFFIXES):
        raise SSRFError(f"Access to '{hostname}' is not allowed")

    if _check_literal_address(hostname):
        return url

    if resolve_dns:
        _check_resolved_addresses(hostname, port or (443 if scheme == "https" else 80))
    return url
