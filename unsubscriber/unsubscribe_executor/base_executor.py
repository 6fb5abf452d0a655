"""
Base Unsubscribe Strategy

Provides what every unsubscribe method shares:
- The uniform ExecutionResult returned by all strategies
- The UnsubscribeTarget describing which URLs a message offers
- Rate limiting between consecutive executions
- Template method that never lets an exception escape the executor

Strategies never raise; failures come back as categorized results.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..email_processor.unsubscribe.constants import (
    METHOD_BROWSER, METHOD_MAILTO, METHOD_ONE_CLICK
)
from ..email_processor.unsubscribe.logging import PipelineLogger


@dataclass
class ExecutionResult:
    """Outcome of one unsubscribe method."""

    method: str
    success: bool = False
    uncertain: bool = False
    fallback_required: bool = False
    failure_reason: Optional[str] = None
    error_message: Optional[str] = None
    url: Optional[str] = None
    status_code: Optional[int] = None
    sent_message_id: Optional[str] = None
    screenshot_path: Optional[str] = None
    final_screenshot_path: Optional[str] = None
    trace_path: Optional[str] = None
    matched_pattern: Optional[str] = None

    @property
    def status(self) -> str:
        if self.success:
            return 'success'
        if self.uncertain:
            return 'uncertain'
        return 'failed'

    def attempt_details(self) -> Dict[str, Any]:
        """Fields persisted on the attempt record."""
        return {
            'failure_reason': None if self.success else self.failure_reason,
            'failure_details': None if self.success else self.error_message,
            'screenshot_path': self.final_screenshot_path or self.screenshot_path,
            'trace_path': self.trace_path,
        }

    @classmethod
    def failed(cls, method: str, reason: str, message: str, fallback_required: bool = False,
               **kwargs) -> 'ExecutionResult':
        return cls(method=method, failure_reason=reason, error_message=message,
                   fallback_required=fallback_required, **kwargs)


@dataclass(frozen=True)
class UnsubscribeTarget:
    """The unsubscribe URLs available for one message."""

    owner_id: str
    message_id: Optional[str] = None
    one_click_url: Optional[str] = None
    mailto_url: Optional[str] = None
    browser_url: Optional[str] = None
    artifact_id: Optional[str] = None

    def url_for(self, method: str) -> Optional[str]:
        return {
            METHOD_ONE_CLICK: self.one_click_url,
            METHOD_MAILTO: self.mailto_url,
            METHOD_BROWSER: self.browser_url,
        }.get(method)

    def has_mechanism(self) -> bool:
        return bool(self.one_click_url or self.mailto_url or self.browser_url)

    @classmethod
    def for_method(cls, owner_id: str, message_id: Optional[str], method: str, url: Optional[str],
                   artifact_id: Optional[str] = None) -> 'UnsubscribeTarget':
        """Target offering a single method, used when re-running an attempt."""
        urls = {
            METHOD_ONE_CLICK: 'one_click_url',
            METHOD_MAILTO: 'mailto_url',
            METHOD_BROWSER: 'browser_url',
        }
        kwargs = {urls[method]: url} if method in urls else {}
        return cls(owner_id=owner_id, message_id=message_id, artifact_id=artifact_id, **kwargs)


class UnsubscribeStrategy(ABC):
    """
    Abstract base class for all unsubscribe methods.

    Subclasses implement ``_perform_execution``; ``execute`` wraps it with
    rate limiting and turns unexpected exceptions into ``unknown`` failures.
    """

    def __init__(self, timeout: int = 30, rate_limit_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            timeout: request timeout in seconds
            rate_limit_delay: delay in seconds between executions
            sleep: sleep function (injected in tests)
        """
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self.sleep = sleep
        self._last_request_time: Optional[float] = None
        self.logger = PipelineLogger(f"executor.{self.method_name}")

    @property
    @abstractmethod
    def method_name(self) -> str:
        """Return the method name (one_click, mailto, browser)."""
        pass

    def applies_to(self, target: UnsubscribeTarget) -> bool:
        return target.url_for(self.method_name) is not None

    def execute(self, target: UnsubscribeTarget) -> ExecutionResult:
        """Run this method against a target (template method)."""
        url = target.url_for(self.method_name)
        if not url:
            return ExecutionResult.failed(self.method_name, 'invalid_url',
                                          f'No {self.method_name} URL available',
                                          fallback_required=True)

        self._apply_rate_limit()

        with self.logger.scoped_context({'owner_id': target.owner_id,
                                         'message_id': target.message_id}):
            try:
                result = self._perform_execution(target, url)
            except Exception as e:
                self.logger.log_exception(e, {'method': self.method_name})
                result = ExecutionResult.failed(self.method_name, 'unknown', str(e),
                                                fallback_required=True, url=url)

        self.logger.log_operation_count(self.method_name, result.success)
        return result

    @abstractmethod
    def _perform_execution(self, target: UnsubscribeTarget, url: str) -> ExecutionResult:
        """
        Perform the method-specific unsubscribe.

        Args:
            target: message and owner being unsubscribed
            url: the URL this method should use

        Returns:
            ExecutionResult; never raises for expected failures
        """
        pass

    def _apply_rate_limit(self):
        """Apply rate limiting delay between requests."""
        if self._last_request_time is not None:
            elapsed = time.time() - self._last_request_time
            if elapsed < self.rate_limit_delay:
                self.sleep(self.rate_limit_delay - elapsed)

        self._last_request_time = time.time()
