"""
Unsubscribe strategy chain and attempt retries.

The chain tries one-click, then mailto, then the browser, moving on only
when a method asks for fallback. Retrying an attempt re-runs the method
recorded on it rather than restarting the chain.
"""

import logging
from typing import Dict, Iterable, Optional

from ..database.models import UnsubscribeAttempt
from ..email_processor.unsubscribe.constants import FALLBACK_ORDER, METHOD_MANUAL
from ..exceptions import AttemptNotFoundError, UnsubscriberError
from .base_executor import ExecutionResult, UnsubscribeStrategy, UnsubscribeTarget

logger = logging.getLogger(__name__)


class UnsubscribeChain:
    """Ordered unsubscribe strategies with fallback."""

    def __init__(self, strategies: Iterable[UnsubscribeStrategy]):
        by_method = {strategy.method_name: strategy for strategy in strategies}
        self.strategies = [by_method[method] for method in FALLBACK_ORDER if method in by_method]

    def strategy_for(self, method: str) -> Optional[UnsubscribeStrategy]:
        for strategy in self.strategies:
            if strategy.method_name == method:
                return strategy
        return None

    def run(self, target: UnsubscribeTarget) -> Optional[ExecutionResult]:
        """
        Execute the first applicable strategy that gives a terminal result.

        Returns None when the target offers no usable mechanism. When every
        applicable strategy asks for fallback, the last result is returned.
        """
        result = None
        for strategy in self.strategies:
            if not strategy.applies_to(target):
                continue
            result = strategy.execute(target)
            if not result.fallback_required:
                return result
            logger.info("%s unsubscribe needs fallback for %s: %s",
                        strategy.method_name, target.message_id, result.error_message)
        return result


class UnsubscribeService:
    """Explicit, user-triggered retries of recorded attempts."""

    def __init__(self, chain: UnsubscribeChain, attempt_tracker):
        self.chain = chain
        self.attempts = attempt_tracker

    def retry_attempt(self, owner_id: str, attempt_id: int) -> UnsubscribeAttempt:
        """
        Re-run the method recorded on an attempt and finalize it.

        Raises:
            AttemptNotFoundError: unknown attempt for this owner
            UnsubscriberError: the attempt's method cannot be re-run
        """
        attempt = self.attempts.get_by_id(owner_id, attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(attempt_id)

        strategy = self.chain.strategy_for(attempt.method)
        if attempt.method == METHOD_MANUAL or strategy is None:
            raise UnsubscriberError("Attempt method cannot be retried",
                                    {'attempt_id': attempt_id, 'method': attempt.method})
        if not attempt.unsubscribe_url:
            raise UnsubscriberError("Attempt has no unsubscribe URL", {'attempt_id': attempt_id})

        retry_count = self.attempts.increment_retry(owner_id, attempt_id)
        target = UnsubscribeTarget.for_method(
            owner_id, attempt.message_id, attempt.method, attempt.unsubscribe_url,
            artifact_id=f"retry-{attempt_id}-{retry_count}",
        )

        try:
            result = strategy.execute(target)
        except Exception as e:
            logger.error("Retry of attempt %s crashed: %s", attempt_id, e)
            result = ExecutionResult.failed(attempt.method, 'unknown', str(e))

        row = self.attempts.update_status(owner_id, attempt_id, result.status, result.attempt_details())
        self.attempts.apply_outcome(owner_id, attempt.message_id, attempt.sender, result.status,
                                    attempt_id=attempt_id)
        return row
