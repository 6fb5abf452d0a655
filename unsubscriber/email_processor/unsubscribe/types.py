"""
Type-safe dataclasses for unsubscribe extraction and validation results.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class UnsubscribeInfo:
    """Unsubscribe mechanisms advertised in a message's headers."""

    raw_directives: List[str] = field(default_factory=list)
    supports_one_click_post: bool = False
    one_click_url: Optional[str] = None
    mailto_url: Optional[str] = None
    http_urls: List[str] = field(default_factory=list)

    def has_mechanism(self) -> bool:
        return bool(self.one_click_url or self.mailto_url or self.http_urls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'raw_directives': list(self.raw_directives),
            'supports_one_click_post': self.supports_one_click_post,
            'one_click_url': self.one_click_url,
            'mailto_url': self.mailto_url,
            'http_urls': list(self.http_urls),
        }


@dataclass(frozen=True)
class ExtractedLink:
    """Candidate unsubscribe link found in an HTML body."""

    url: str
    text: str
    confidence: float

    def is_high_confidence(self) -> bool:
        """Check if the link has high confidence (>= 0.8)."""
        return self.confidence >= 0.8


@dataclass(frozen=True)
class ConfidenceWeights:
    """
    Additive weights for scoring HTML unsubscribe links.

    The defaults are empirical; scores are clamped to [0, 1].
    """

    url_high: float = 0.4
    url_broad: float = 0.2
    text_high: float = 0.4
    text_broad: float = 0.2
    exact_text_bonus: float = 0.2
    long_text_penalty: float = 0.1
    path_bonus: float = 0.2


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of URL safety validation."""

    is_valid: bool
    url: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.is_valid:
            return "URL is safe to use"
        return f"URL rejected: {self.error}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_valid': self.is_valid,
            'url': self.url,
            'error': self.error,
            'warnings': list(self.warnings),
        }


@dataclass(frozen=True)
class MailtoInfo:
    """Parsed mailto: URI."""

    to: str
    subject: Optional[str] = None
    body: Optional[str] = None
