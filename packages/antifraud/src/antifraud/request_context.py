"""Helpers to pull the client IP and user agent off an inbound request."""

import ipaddress

from fastapi import Request

DEFAULT_IP = "127.0.0.1"
DEFAULT_USER_AGENT = "Unknown"


def normalize_ip(value: str | None) -> str | None:
    """Canonical IP from a header or peer value, or None if it is not an IP.

    Accepts "ip", "ipv4:port", "[ipv6]" and "[ipv6]:port".
    """
    if not value:
        return None
    candidate = value.strip()
    if candidate.startswith("["):
        candidate = candidate[1:].partition("]")[0]
    elif candidate.count(":") == 1:
        candidate = candidate.partition(":")[0]
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def extract_real_ip(request: Request) -> str:
    """Client IP, honouring reverse-proxy headers.

    Precedence: x-real-ip, first x-forwarded-for entry, socket peer, 127.0.0.1.
    Ports are dropped and values that are not IP addresses ("unknown",
    obfuscated identifiers) are skipped.
    """
    forwarded_for = request.headers.get("x-forwarded-for", "")
    candidates = [
        request.headers.get("x-real-ip"),
        forwarded_for.split(",")[0],
        request.client.host if request.client else None,
    ]
    for candidate in candidates:
        ip = normalize_ip(candidate)
        if ip:
            return ip

    return DEFAULT_IP


def extract_user_agent(request: Request) -> str:
    """User-Agent header, or "Unknown"."""
    return request.headers.get("user-agent") or DEFAULT_USER_AGENT
