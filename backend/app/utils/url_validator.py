"""
URL validation and SSRF protection
Blocks private addresses, loopback, cloud metadata hosts and dangerous encodings
"""

import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

BLOCKED_HOSTS = {
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "::1",
    "[::1]",
    "metadata.google.internal",
    "169.254.169.254",  # cloud metadata
    "metadata",
}

BLOCKED_PATTERNS = [
    re.compile(r"^10\.\d{1,3}\.\d{1,3}\.\d{1,3}$"),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\.\d{1,3}\.\d{1,3}$"),
    re.compile(r"^192\.168\.\d{1,3}\.\d{1,3}$"),
    re.compile(r"^fc00:", re.IGNORECASE),
    re.compile(r"^fe80:", re.IGNORECASE),
    re.compile(r"^::ffff:", re.IGNORECASE),
]

ALLOWED_SCHEMES = ("http", "https")

_SCHEME_PATTERN = re.compile(r"^([a-z][a-z0-9+.\-]*)://", re.IGNORECASE)
_BAD_ENCODING = re.compile(r"%25|%00|%0d|%0a", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
# shorthand, octal and hex IPv4 forms such as 127.1, 0177.0.0.1 or 0x7f000001
_NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]*|\d+)(\.(0x[0-9a-f]*|\d+)){0,3}\.?$")


@dataclass
class UrlValidationResult:
    valid: bool
    error: Optional[str] = None
    normalized_url: Optional[str] = None


def _is_private_address(hostname: str) -> bool:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
        or address.is_multicast
    )


def canonical_ipv4(hostname: str) -> Optional[str]:
    """
    Dotted-quad form of a numeric IPv4 hostname, as the system resolver reads it.

    Returns None for hostnames that are not numeric. Raises ValueError for
    numeric forms that do not map to an address.
    """
    if not _NUMERIC_HOST.match(hostname):
        return None
    try:
        return socket.inet_ntoa(socket.inet_aton(hostname.rstrip(".")))
    except OSError:
        raise ValueError(f"Invalid IPv4 address: {hostname}")


def validate_url(url: Optional[str]) -> UrlValidationResult:
    """
    Validate a URL before any outbound request.

    A missing scheme defaults to https. The normalized form has a lower-cased
    scheme and host and a path of at least "/".
    """
    if not url or not isinstance(url, str) or not url.strip():
        return UrlValidationResult(valid=False, error="URL is required")

    candidate = url.strip()

    if _CONTROL_CHARS.search(candidate):
        return UrlValidationResult(valid=False, error="URL contains invalid characters")

    if "file://" in candidate.lower():
        return UrlValidationResult(valid=False, error="File URLs are not allowed")

    scheme_match = _SCHEME_PATTERN.match(candidate)
    if scheme_match:
        scheme = scheme_match.group(1).lower()
        if scheme not in ALLOWED_SCHEMES:
            return UrlValidationResult(valid=False, error=f"Protocol {scheme}: is not allowed")
    else:
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        hostname = (parts.hostname or "").lower()
        username, password = parts.username, parts.password
        port = parts.port
    except ValueError:
        return UrlValidationResult(valid=False, error="Invalid URL format")

    if not hostname:
        return UrlValidationResult(valid=False, error="Invalid URL format")

    try:
        address = canonical_ipv4(hostname)
    except ValueError:
        return UrlValidationResult(valid=False, error="Invalid URL format")
    if address is not None and address != hostname:
        # checks below run on the address the request would reach
        numeric_form = hostname
        hostname = address
    else:
        numeric_form = None

    if hostname in BLOCKED_HOSTS:
        return UrlValidationResult(valid=False, error="This hostname is not allowed")

    for pattern in BLOCKED_PATTERNS:
        if pattern.search(hostname):
            return UrlValidationResult(valid=False, error="Private IP addresses are not allowed")

    if _is_private_address(hostname):
        return UrlValidationResult(valid=False, error="Private IP addresses are not allowed")

    if username or password:
        return UrlValidationResult(valid=False, error="URLs with credentials are not allowed")

    if numeric_form is not None:
        return UrlValidationResult(valid=False, error="Numeric hostnames are not allowed")

    if _BAD_ENCODING.search(candidate):
        return UrlValidationResult(valid=False, error="URL contains invalid encoding")

    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if port is not None:
        netloc = f"{netloc}:{port}"

    normalized = urlunsplit((
        parts.scheme.lower(),
        netloc,
        parts.path or "/",
        parts.query,
        parts.fragment,
    ))
    return UrlValidationResult(valid=True, normalized_url=normalized)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Hostname of a validated URL, or None"""
    result = validate_url(url)
    if not result.valid or not result.normalized_url:
        return None
    return urlsplit(result.normalized_url).hostname


def sanitize_url_for_display(url: Optional[str]) -> str:
    result = validate_url(url)
    if not result.valid or not result.normalized_url:
        return "[invalid URL]"
    return result.normalized_url
