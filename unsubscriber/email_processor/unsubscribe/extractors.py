"""
Unsubscribe mechanism extraction from message headers and HTML bodies.

Works on the provider's message representation: a list of
``{'name': ..., 'value': ...}`` headers and a MIME payload tree whose
parts carry base64url-encoded ``body.data``.
"""

import base64
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from bs4 import BeautifulSoup

from ...exceptions import InvalidAddressError
from .constants import (
    HEADER_URL_PATTERN, SENDER_EMAIL_PATTERN, UNSUBSCRIBE_LINK_PATTERNS,
    HIGH_CONFIDENCE_PATTERNS, UNSUBSCRIBE_PATH_PATTERN, LONG_LINK_TEXT_LENGTH,
    LIST_UNSUBSCRIBE_HEADER, LIST_UNSUBSCRIBE_POST_HEADER, ONE_CLICK_MARKER
)
from .types import ConfidenceWeights, ExtractedLink, UnsubscribeInfo

Headers = Union[Iterable[Dict[str, str]], Mapping[str, str]]

DEFAULT_WEIGHTS = ConfidenceWeights()

_WHITESPACE = re.compile(r'\s+')


def get_header(headers: Headers, name: str) -> Optional[str]:
    """Case-insensitive header lookup; the first occurrence wins."""
    wanted = name.lower()
    if isinstance(headers, Mapping):
        for key, value in headers.items():
            if key.lower() == wanted:
                return value
        return None
    for header in headers or []:
        if header.get('name', '').lower() == wanted:
            return header.get('value')
    return None


def normalize_address(address: str) -> str:
    return address.lower().strip()


def extract_email_address(header_value: str) -> Optional[str]:
    """
    Pull the address out of a From/Sender style header.

    Handles "Name <a@b.com>", "<a@b.com>" and a bare "a@b.com".
    """
    angle_match = HEADER_URL_PATTERN.search(header_value)
    if angle_match:
        return normalize_address(angle_match.group(1))

    email_match = SENDER_EMAIL_PATTERN.search(header_value)
    if email_match:
        return normalize_address(email_match.group(0))

    return None


def get_sender(headers: Headers) -> Optional[str]:
    """Normalized sender address from From, falling back to Sender."""
    for name in ('From', 'Sender'):
        value = get_header(headers, name)
        if value:
            return extract_email_address(value)
    return None


def extract_domain(address: str) -> str:
    """
    Domain part of an address, lowercased.

    Raises:
        InvalidAddressError: if the address is not exactly local@domain
    """
    parts = address.split('@')
    if len(parts) != 2 or not parts[1]:
        raise InvalidAddressError(address)
    return parts[1].lower()


def parse_unsubscribe_header(headers: Headers) -> UnsubscribeInfo:
    """
    Parse List-Unsubscribe and List-Unsubscribe-Post.

    Directive order is preserved. The first mailto: URI becomes the mailto
    target; with RFC 8058 one-click support the first HTTP URI becomes the
    one-click target.
    """
    value = get_header(headers, LIST_UNSUBSCRIBE_HEADER)
    if not value:
        return UnsubscribeInfo()

    post_value = get_header(headers, LIST_UNSUBSCRIBE_POST_HEADER) or ''
    one_click = ONE_CLICK_MARKER in post_value.lower()

    directives = [match.strip() for match in HEADER_URL_PATTERN.findall(value)]
    mailto_url = None
    http_urls = []
    for url in directives:
        lowered = url.lower()
        if lowered.startswith('mailto:'):
            if mailto_url is None:
                mailto_url = url
        elif lowered.startswith(('http://', 'https://')):
            http_urls.append(url)

    return UnsubscribeInfo(
        raw_directives=directives,
        supports_one_click_post=one_click,
        one_click_url=http_urls[0] if one_click and http_urls else None,
        mailto_url=mailto_url,
        http_urls=http_urls,
    )


def _matches_any(patterns, text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def score_link(url: str, text: str, weights: ConfidenceWeights = DEFAULT_WEIGHTS) -> float:
    """Confidence in [0, 1] that an anchor is an unsubscribe link."""
    confidence = 0.0

    if _matches_any(HIGH_CONFIDENCE_PATTERNS, url):
        confidence += weights.url_high
    elif _matches_any(UNSUBSCRIBE_LINK_PATTERNS, url):
        confidence += weights.url_broad

    if _matches_any(HIGH_CONFIDENCE_PATTERNS, text):
        confidence += weights.text_high
    elif _matches_any(UNSUBSCRIBE_LINK_PATTERNS, text):
        confidence += weights.text_broad

    if text.strip().lower() == 'unsubscribe':
        confidence += weights.exact_text_bonus

    if len(text) > LONG_LINK_TEXT_LENGTH:
        confidence -= weights.long_text_penalty

    if UNSUBSCRIBE_PATH_PATTERN.search(url):
        confidence += weights.path_bonus

    return min(1.0, max(0.0, confidence))


def extract_unsubscribe_links(html: str, weights: ConfidenceWeights = DEFAULT_WEIGHTS) -> List[ExtractedLink]:
    """
    Candidate unsubscribe links from an HTML body.

    Only http(s) anchors whose URL, text or markup match an unsubscribe
    pattern qualify. Results are sorted by confidence (stable for ties) and
    deduplicated by URL, keeping the highest-scored occurrence.
    """
    if not html:
        return []

    soup = BeautifulSoup(html, 'html.parser')
    links = []
    for anchor in soup.find_all('a', href=True):
        url = anchor['href'].strip()
        if not url.startswith('http'):
            continue

        text = _WHITESPACE.sub(' ', anchor.get_text(' ')).strip()
        combined = f"{url} {text} {anchor}"
        if not _matches_any(UNSUBSCRIBE_LINK_PATTERNS, combined):
            continue

        links.append(ExtractedLink(url=url, text=text, confidence=score_link(url, text, weights)))

    links.sort(key=lambda link: link.confidence, reverse=True)

    seen = set()
    unique = []
    for link in links:
        if link.url in seen:
            continue
        seen.add(link.url)
        unique.append(link)
    return unique


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 (padding optional) to text."""
    padded = data + '=' * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode('utf-8', errors='replace')


def find_html_body(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """First text/html body in a MIME payload tree, depth first."""
    if not payload:
        return None

    data = (payload.get('body') or {}).get('data')
    if payload.get('mimeType') == 'text/html' and data:
        return decode_base64url(data)

    for part in payload.get('parts') or []:
        found = find_html_body(part)
        if found:
            return found

    return None
