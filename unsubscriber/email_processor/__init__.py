"""
Mailbox access, scanning and unsubscribe mechanism extraction.
"""
