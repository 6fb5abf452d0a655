"""
Page heuristics for browser-driven unsubscribes.

Plain functions over lowercased page content plus the selector lists tried
against the live page. Learned patterns from the pattern store always take
precedence over the generic lists here.
"""

from typing import Iterable, Optional
from urllib.parse import urlsplit

CAPTCHA_MARKERS = (
    'g-recaptcha',
    'h-captcha',
    'cf-turnstile',
    'captcha',
    'verify you are human',
    "verify you're human",
)

LOGIN_MARKERS = (
    'please log in',
    'please sign in',
    'login required',
    'sign in to continue',
    'authentication required',
    'sign in with your',
    'log in to your account',
    'enter your password',
)

# Domains whose unsubscribe pages always sit behind a login
LOGIN_REQUIRED_DOMAINS = (
    'informeddelivery.usps.com',
)

GENERIC_SUCCESS_PHRASES = (
    '✅ success',
    'email preferences updated',
    'removed from our mailing list',
    'subscription canceled',
    'success',
    'successfully unsubscribed',
    'unsubscribe successful',
    'you are now unsubscribed',
    'you have been unsubscribed',
    'you will no longer receive',
)

GENERIC_ERROR_PHRASES = (
    'error occurred',
    'something went wrong',
    'unable to process',
    'link has expired',
    'invalid request',
    'please try again',
    'invalid token',
    'missing token',
    'token expired',
    'link is no longer valid',
    'link is invalid',
)

GENERIC_BUTTON_SELECTORS = (
    'button:has-text("unsubscribe")',
    'a:has-text("unsubscribe")',
    'input[type="submit"][value*="unsubscribe" i]',
    'button:has-text("opt out")',
    'a:has-text("opt out")',
    'button:has-text("remove")',
    '[role="button"]:has-text("unsubscribe")',
    'button:has-text("submit")',
    'input[type="submit"]',
    'button:has-text("confirm")',
)

REASON_DROPDOWN_SELECTORS = (
    'select[name*="reason" i]',
    'select[name*="why" i]',
    'select[id*="reason" i]',
    'select[id*="unsubscribe" i]',
    'select',
)

REASON_RADIO_SELECTORS = (
    'input[type="radio"][name*="reason" i]',
    'input[type="radio"][name*="why" i]',
    'input[type="radio"][name*="feedback" i]',
    'label:has-text("too many emails") input[type="radio"]',
    'label:has-text("not interested") input[type="radio"]',
    'label:has-text("no longer") input[type="radio"]',
    'label:has-text("other") input[type="radio"]',
    'input[type="radio"] ~ label:has-text("too many")',
    'input[type="radio"][id*="reason"]',
    'input[type="checkbox"][name*="unsubscribe" i]',
)

REASON_LABEL_SELECTORS = (
    'label:has-text("too many emails")',
    'label:has-text("not relevant")',
    'label:has-text("no longer interested")',
    'label:has-text("other")',
    'label:has-text("I receive too many")',
    'label:has-text("content is not relevant")',
    '[data-testid*="reason"]',
)


def _first_marker(content: str, markers: Iterable[str]) -> Optional[str]:
    for marker in markers:
        if marker in content:
            return marker
    return None


def detect_captcha(content: str) -> Optional[str]:
    """The CAPTCHA marker found in the page, if any."""
    return _first_marker(content.lower(), CAPTCHA_MARKERS)


def detect_login_required(content: str, url: str) -> Optional[str]:
    """Why the page needs a login: a known domain or a page marker."""
    hostname = (urlsplit(url).hostname or '').lower()
    for domain in LOGIN_REQUIRED_DOMAINS:
        if hostname == domain or hostname.endswith('.' + domain):
            return domain
    return _first_marker(content.lower(), LOGIN_MARKERS)


def find_text_pattern(content: str, patterns) -> Optional[object]:
    """First learned text pattern whose selector appears in the page."""
    lowered = content.lower()
    for pattern in patterns:
        if pattern.selector and pattern.selector.lower() in lowered:
            return pattern
    return None


def find_generic_success(content: str) -> Optional[str]:
    return _first_marker(content.lower(), GENERIC_SUCCESS_PHRASES)


def find_generic_error(content: str) -> Optional[str]:
    return _first_marker(content.lower(), GENERIC_ERROR_PHRASES)


def categorize_exception(exc: BaseException) -> str:
    """Failure reason for an exception raised while driving the page."""
    message = str(exc)
    if 'timeout' in message.lower():
        return 'timeout'
    if 'net::' in message or 'ERR_' in message:
        return 'network_error'
    return 'unknown'
