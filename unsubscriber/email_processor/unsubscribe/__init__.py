"""
Unsubscribe mechanism extraction and URL validation.
"""

from .extractors import (
    extract_domain, extract_unsubscribe_links, find_html_body, get_header,
    get_sender, normalize_address, parse_unsubscribe_header
)
from .types import ConfidenceWeights, ExtractedLink, MailtoInfo, UnsubscribeInfo, ValidationResult
from .validators import parse_mailto_url, validate_mailto_url, validate_unsubscribe_url

__all__ = [
    'extract_domain', 'extract_unsubscribe_links', 'find_html_body', 'get_header',
    'get_sender', 'normalize_address', 'parse_unsubscribe_header',
    'ConfidenceWeights', 'ExtractedLink', 'MailtoInfo', 'UnsubscribeInfo', 'ValidationResult',
    'parse_mailto_url', 'validate_mailto_url', 'validate_unsubscribe_url',
]
