"""
Mailbox scanning and automated unsubscribing.
"""

__version__ = '1.0.0'
