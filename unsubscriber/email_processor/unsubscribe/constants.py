"""
Constants and shared configuration for unsubscribe functionality.

This module contains the patterns, keywords and limits used across the
extraction, validation and execution stages of the pipeline.
"""

import re
from typing import List, Pattern

# Unsubscribe directive header names
LIST_UNSUBSCRIBE_HEADER = 'List-Unsubscribe'
LIST_UNSUBSCRIBE_POST_HEADER = 'List-Unsubscribe-Post'
ONE_CLICK_MARKER = 'list-unsubscribe=one-click'

# <uri> entries inside List-Unsubscribe
HEADER_URL_PATTERN: Pattern = re.compile(r'<([^>]+)>')

# Bare address inside a From/Sender header without angle brackets
SENDER_EMAIL_PATTERN: Pattern = re.compile(r'[\w.+-]+@[\w.-]+\.\w+')

# Anchors qualify as unsubscribe candidates if their URL, text or markup match one of these
UNSUBSCRIBE_LINK_PATTERNS: List[Pattern] = [
    re.compile(r'unsubscribe', re.IGNORECASE),
    re.compile(r'opt[- ]?out', re.IGNORECASE),
    re.compile(r'remove[- ]?me', re.IGNORECASE),
    re.compile(r'stop[- ]?emails', re.IGNORECASE),
    re.compile(r'manage[- ]?preferences', re.IGNORECASE),
    re.compile(r'email[- ]?preferences', re.IGNORECASE),
    re.compile(r'subscription[- ]?settings', re.IGNORECASE),
    re.compile(r'click[- ]?here[- ]?to[- ]?unsubscribe', re.IGNORECASE),
]

# Subset that earns the full URL/text weight
HIGH_CONFIDENCE_PATTERNS: List[Pattern] = [
    re.compile(r'\bunsubscribe\b', re.IGNORECASE),
    re.compile(r'\bopt[- ]?out\b', re.IGNORECASE),
]

UNSUBSCRIBE_PATH_PATTERN: Pattern = re.compile(r'/unsubscribe|/unsub|/optout|/opt-out', re.IGNORECASE)

LONG_LINK_TEXT_LENGTH = 100

# Unsubscribe methods, in the order they are tried
METHOD_ONE_CLICK = 'one_click'
METHOD_MAILTO = 'mailto'
METHOD_BROWSER = 'browser'
METHOD_MANUAL = 'manual'
FALLBACK_ORDER = (METHOD_ONE_CLICK, METHOD_MAILTO, METHOD_BROWSER)

# RFC 8058 one-click request body
ONE_CLICK_BODY = 'List-Unsubscribe=One-Click'
ONE_CLICK_CONTENT_TYPE = 'application/x-www-form-urlencoded'

# mailto defaults when the URI carries no subject/body
MAILTO_ADDRESS_PATTERN: Pattern = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
DEFAULT_MAILTO_SUBJECT = 'Unsubscribe'
DEFAULT_MAILTO_BODY = 'Please unsubscribe me from this mailing list.'

# URL safety
ALLOWED_URL_SCHEMES = ('http', 'https')
BLOCKED_HOSTNAMES = (
    'localhost',
    'localhost.localdomain',
    '0.0.0.0',
    '[::]',
    '[::1]',
)
