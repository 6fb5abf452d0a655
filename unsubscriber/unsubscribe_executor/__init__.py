"""
Unsubscribe Executor Module

Strategies that perform an unsubscribe (one-click POST, mailto, browser)
and the chain that orders them.
"""

from .base_executor import ExecutionResult, UnsubscribeStrategy, UnsubscribeTarget
from .one_click_executor import OneClickExecutor
from .mailto_executor import MailtoExecutor
from .browser_executor import BrowserExecutor, BrowserManager
from .chain import UnsubscribeChain, UnsubscribeService

__all__ = [
    'ExecutionResult', 'UnsubscribeStrategy', 'UnsubscribeTarget',
    'OneClickExecutor', 'MailtoExecutor', 'BrowserExecutor', 'BrowserManager',
    'UnsubscribeChain', 'UnsubscribeService',
]
