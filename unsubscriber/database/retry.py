"""
Retry policy for transient database errors.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = (
    'deadlock',
    'serialization',
    'could not serialize',
    'connection',
    'timeout',
    'pool',
    'too many connections',
    'remaining connection slots',
    'database is locked',
)

DEAD_CONNECTION_MARKERS = (
    'server closed the connection',
    'terminating connection',
    'connection is closed',
    'connection already closed',
    'connection reset',
    'broken pipe',
)


def is_transient_db_error(exc: BaseException) -> bool:
    """True for errors worth retrying: lost connections, pool exhaustion, conflicts."""
    if isinstance(exc, (DisconnectionError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        message = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in message for marker in TRANSIENT_MARKERS)
    return False


def is_dead_connection_error(exc: BaseException) -> bool:
    """True when the underlying connection cannot be reused."""
    if isinstance(exc, DisconnectionError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in DEAD_CONNECTION_MARKERS)


def db_retrying(max_retries: int = 3,
                on_dead_connection: Optional[Callable[[], None]] = None) -> Retrying:
    """
    Build a tenacity Retrying for database work.

    Backoff starts at 100ms and doubles per attempt with up to 50ms jitter.
    ``on_dead_connection`` runs before the next attempt when the connection
    is gone, typically to dispose the engine's pool.
    """
    def _before_sleep(retry_state):
        exc = retry_state.outcome.exception()
        logger.warning(
            "Transient database error (attempt %d/%d): %s",
            retry_state.attempt_number, max_retries, exc
        )
        if on_dead_connection is not None and is_dead_connection_error(exc):
            on_dead_connection()

    return Retrying(
        retry=retry_if_exception(is_transient_db_error),
        wait=wait_exponential_jitter(initial=0.1, exp_base=2, max=2.0, jitter=0.05),
        stop=stop_after_attempt(max_retries),
        before_sleep=_before_sleep,
        reraise=True,
    )
