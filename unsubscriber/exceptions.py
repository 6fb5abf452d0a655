"""
Exceptions raised by the unsubscribe pipeline.

Every exception carries an optional context dict that is rendered in the
message so log lines stay self-describing.
"""

from typing import Any, Dict, Optional


class UnsubscriberError(Exception):
    """Base exception for the unsubscribe pipeline."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    def __str__(self) -> str:
        base_message = super().__str__()
        if self.context:
            context_info = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base_message} (context: {context_info})"
        return base_message


class InvalidAddressError(UnsubscriberError):
    """Raised when a sender address has no usable domain part."""

    def __init__(self, address: str):
        super().__init__("Invalid email address", {'address': address})
        self.address = address


class ScanInProgressError(UnsubscriberError):
    """Raised when a scan is requested for an owner that is already scanning."""

    def __init__(self, owner_id: str):
        super().__init__("Scan already in progress", {'owner_id': owner_id})
        self.owner_id = owner_id


class MailboxProviderError(UnsubscriberError):
    """Raised when the mailbox provider rejects a request."""

    def __init__(self, message: str, status: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        merged = dict(context or {})
        if status is not None:
            merged['status'] = status
        super().__init__(message, merged)
        self.status = status


class HistoryExpiredError(MailboxProviderError):
    """Raised when the incremental sync cursor is too old to be used."""

    def __init__(self, cursor: Optional[str] = None):
        super().__init__("History cursor expired, full sync required",
                         status=404, context={'cursor': cursor})
        self.cursor = cursor


class TokenUnavailableError(UnsubscriberError):
    """Raised when no access token can be produced for an owner."""

    def __init__(self, owner_id: str):
        super().__init__("No access token available", {'owner_id': owner_id})
        self.owner_id = owner_id


class AllowListValidationError(UnsubscriberError):
    """Raised when an allow-list entry is malformed."""


class PatternValidationError(UnsubscriberError):
    """Raised when a pattern definition is malformed or not editable."""


class AttemptNotFoundError(UnsubscriberError):
    """Raised when an unsubscribe attempt id does not exist for the owner."""

    def __init__(self, attempt_id: int):
        super().__init__("Unsubscribe attempt not found", {'attempt_id': attempt_id})
        self.attempt_id = attempt_id


class StorageUploadError(UnsubscriberError):
    """Raised when an object storage upload fails."""
