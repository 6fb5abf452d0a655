"""
Unsubscribe URL safety validation.

Unsubscribe URLs come from untrusted mail, so before any request is made:
- only http/https schemes are accepted
- loopback, private, link-local and carrier-NAT addresses are rejected
- well-known local hostnames are rejected
- credentials are stripped and path traversal sequences removed

Hostnames are not resolved; a public name pointing at a private address is
not caught here.
"""

import ipaddress
import re
import socket
from typing import Optional
from urllib.parse import parse_qs, unquote, urlsplit, urlunsplit

from .constants import ALLOWED_URL_SCHEMES, BLOCKED_HOSTNAMES, MAILTO_ADDRESS_PATTERN
from .logging import PipelineLogger
from .types import MailtoInfo, ValidationResult

PRIVATE_NETWORKS = [
    ipaddress.ip_network('127.0.0.0/8'),     # loopback
    ipaddress.ip_network('10.0.0.0/8'),
    ipaddress.ip_network('172.16.0.0/12'),
    ipaddress.ip_network('192.168.0.0/16'),
    ipaddress.ip_network('169.254.0.0/16'),  # link-local
    ipaddress.ip_network('0.0.0.0/8'),       # current network
    ipaddress.ip_network('100.64.0.0/10'),   # carrier-grade NAT
    ipaddress.ip_network('::1/128'),
    ipaddress.ip_network('::/128'),
    ipaddress.ip_network('fe80::/10'),
    ipaddress.ip_network('fc00::/7'),        # unique local (fc00::/8 and fd00::/8)
]

_logger = PipelineLogger("url_validator")


_NUMERIC_HOST = re.compile(r'^(0x[0-9a-f]*|\d+)(\.(0x[0-9a-f]*|\d+)){0,3}$', re.IGNORECASE)


def _parse_ip(hostname: str):
    """
    IP address named by a host, or None for a domain name.

    Shorthand IPv4 forms that browsers and resolvers accept (``127.1``,
    ``2130706433``, ``0x7f.0.0.1``, ``0177.0.0.1``) are normalised first.
    """
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass

    host = hostname.rstrip('.')
    if not _NUMERIC_HOST.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        raise ValueError(f"Invalid numeric host: {hostname}")


def _in_blocked_range(address) -> bool:
    if getattr(address, 'ipv4_mapped', None) is not None:
        address = address.ipv4_mapped
    return any(address in network for network in PRIVATE_NETWORKS if address.version == network.version)


def is_private_address(hostname: str) -> bool:
    """True if the hostname is an IP literal inside a blocked range, or an unparseable numeric host."""
    try:
        address = _parse_ip(hostname)
    except ValueError:
        return True
    return address is not None and _in_blocked_range(address)


def _sanitize(parsed, hostname: str, port: Optional[int]) -> str:
    host = f"[{hostname}]" if ':' in hostname else hostname
    netloc = f"{host}:{port}" if port is not None else host

    path = parsed.path.replace('..', '')
    path = re.sub(r'/+', '/', path)

    return urlunsplit((parsed.scheme, netloc, path, parsed.query, parsed.fragment))


def validate_unsubscribe_url(url: Optional[str]) -> ValidationResult:
    """
    Validate and sanitize an http(s) unsubscribe URL.

    Rejection is reported through the result, never raised.
    """
    if not url or not isinstance(url, str):
        return ValidationResult(is_valid=False, error='URL is required')

    trimmed = url.strip()
    try:
        parsed = urlsplit(trimmed)
        hostname = (parsed.hostname or '').lower()
        port = parsed.port
    except ValueError:
        return ValidationResult(is_valid=False, error='Invalid URL format')

    if parsed.scheme not in ALLOWED_URL_SCHEMES:
        return ValidationResult(is_valid=False, error=f'Invalid scheme: {parsed.scheme or "none"}')

    if not hostname:
        return ValidationResult(is_valid=False, error='Invalid URL format')

    if hostname in BLOCKED_HOSTNAMES or f"[{hostname}]" in BLOCKED_HOSTNAMES:
        return ValidationResult(is_valid=False, error='Blocked hostname')

    try:
        address = _parse_ip(hostname)
    except ValueError:
        return ValidationResult(is_valid=False, error='Invalid IP address')

    if address is not None and _in_blocked_range(address):
        return ValidationResult(is_valid=False, error='Private IP addresses are not allowed')

    warnings = []
    if address is not None:
        # Shorthand numeric forms are rewritten to the canonical address
        hostname = str(address)
        warnings.append('Direct IP address in URL')
        _logger.warning("Direct IP address in unsubscribe URL", {'hostname': hostname})

    return ValidationResult(is_valid=True, url=_sanitize(parsed, hostname, port), warnings=warnings)


def _split_mailto(url: str):
    without_scheme = url[len('mailto:'):]
    recipient, _, query = without_scheme.partition('?')
    return recipient, query


def validate_mailto_url(url: Optional[str]) -> ValidationResult:
    """Check that a mailto: URI names a syntactically valid recipient."""
    if not url or not url.lower().startswith('mailto:'):
        return ValidationResult(is_valid=False, error='Not a mailto URL')

    recipient, _ = _split_mailto(url)
    if not MAILTO_ADDRESS_PATTERN.match(unquote(recipient)):
        return ValidationResult(is_valid=False, error='Invalid email address in mailto URL')

    return ValidationResult(is_valid=True, url=url)


def parse_mailto_url(url: str) -> Optional[MailtoInfo]:
    """Recipient plus URL-decoded subject/body of a mailto: URI."""
    if not url or not url.lower().startswith('mailto:'):
        return None

    recipient, query = _split_mailto(url)
    params = parse_qs(query) if query else {}
    subject = params.get('subject', [None])[0]
    body = params.get('body', [None])[0]

    return MailtoInfo(to=unquote(recipient), subject=subject, body=body)
