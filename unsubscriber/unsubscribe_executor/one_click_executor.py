"""
One-Click Unsubscribe Executor

RFC 8058 one-click unsubscribe: POST ``List-Unsubscribe=One-Click`` as a
form body to the header-advertised URL, following redirects. Any failure
asks the chain to fall back to the next method.
"""

import requests

from ..email_processor.unsubscribe.constants import (
    METHOD_ONE_CLICK, ONE_CLICK_BODY, ONE_CLICK_CONTENT_TYPE
)
from ..email_processor.unsubscribe.validators import validate_unsubscribe_url
from .base_executor import ExecutionResult, UnsubscribeStrategy, UnsubscribeTarget


class OneClickExecutor(UnsubscribeStrategy):
    """Execute RFC 8058 one-click POST requests."""

    def __init__(self, timeout: int = 30, user_agent: str = 'Unsubscriber/1.0',
                 rate_limit_delay: float = 1.0, http=None, **kwargs):
        """
        Args:
            timeout: HTTP request timeout in seconds
            user_agent: User-Agent header value
            rate_limit_delay: delay between requests in seconds
            http: requests-compatible session (defaults to the requests module)
        """
        super().__init__(timeout=timeout, rate_limit_delay=rate_limit_delay, **kwargs)
        self.user_agent = user_agent
        self.http = http if http is not None else requests

    @property
    def method_name(self) -> str:
        return METHOD_ONE_CLICK

    def _perform_execution(self, target: UnsubscribeTarget, url: str) -> ExecutionResult:
        validation = validate_unsubscribe_url(url)
        if not validation.is_valid:
            return ExecutionResult.failed(self.method_name, 'invalid_url', validation.error,
                                          fallback_required=True, url=url)

        safe_url = validation.url
        try:
            response = self.http.post(
                safe_url,
                data=ONE_CLICK_BODY,
                headers={
                    'Content-Type': ONE_CLICK_CONTENT_TYPE,
                    'User-Agent': self.user_agent,
                },
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout:
            return ExecutionResult.failed(self.method_name, 'timeout',
                                          f'Request timed out after {self.timeout} seconds',
                                          fallback_required=True, url=safe_url)
        except requests.exceptions.RequestException as e:
            return ExecutionResult.failed(self.method_name, 'network_error',
                                          f'Connection error: {e}',
                                          fallback_required=True, url=safe_url)

        if 200 <= response.status_code < 300:
            self.logger.info("One-click unsubscribe successful", {'status_code': response.status_code})
            return ExecutionResult(method=self.method_name, success=True, url=safe_url,
                                   status_code=response.status_code)

        return ExecutionResult.failed(
            self.method_name, 'network_error', f'HTTP {response.status_code}: {response.reason}',
            fallback_required=True, url=safe_url, status_code=response.status_code,
        )
