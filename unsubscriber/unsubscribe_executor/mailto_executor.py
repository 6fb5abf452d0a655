"""
Mailto Unsubscribe Executor

Sends the unsubscribe email from the owner's own mailbox through the
mailbox provider, using the subject and body carried in the mailto: URI
when present.
"""

from ..email_processor.unsubscribe.constants import (
    DEFAULT_MAILTO_BODY, DEFAULT_MAILTO_SUBJECT, METHOD_MAILTO
)
from ..email_processor.unsubscribe.validators import parse_mailto_url, validate_mailto_url
from ..exceptions import UnsubscriberError
from .base_executor import ExecutionResult, UnsubscribeStrategy, UnsubscribeTarget


class MailtoExecutor(UnsubscribeStrategy):
    """Execute unsubscribe requests by sending an email."""

    def __init__(self, mail_client, rate_limit_delay: float = 2.0, **kwargs):
        """
        Args:
            mail_client: provider with send_message(owner_id, to, subject, body)
            rate_limit_delay: delay in seconds between email sends
        """
        super().__init__(rate_limit_delay=rate_limit_delay, **kwargs)
        self.mail_client = mail_client

    @property
    def method_name(self) -> str:
        return METHOD_MAILTO

    def _perform_execution(self, target: UnsubscribeTarget, url: str) -> ExecutionResult:
        validation = validate_mailto_url(url)
        if not validation.is_valid:
            return ExecutionResult.failed(self.method_name, 'invalid_url', validation.error, url=url)

        parsed = parse_mailto_url(url)
        if parsed is None:
            return ExecutionResult.failed(self.method_name, 'invalid_url', 'Failed to parse mailto URL',
                                          url=url)

        try:
            sent = self.mail_client.send_message(
                target.owner_id,
                parsed.to,
                parsed.subject or DEFAULT_MAILTO_SUBJECT,
                parsed.body or DEFAULT_MAILTO_BODY,
            )
        except UnsubscriberError as e:
            self.logger.error("Mailto unsubscribe failed", {'to': parsed.to, 'error': str(e)})
            return ExecutionResult.failed(self.method_name, 'network_error', str(e),
                                          fallback_required=True, url=url)

        message_id = (sent or {}).get('id')
        self.logger.info("Mailto unsubscribe sent", {'to': parsed.to, 'sent_message_id': message_id})
        return ExecutionResult(method=self.method_name, success=True, url=url,
                               sent_message_id=message_id)
