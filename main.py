#!/usr/bin/env python3
"""
Command-line interface for the unsubscriber.

Same commands as the installed ``unsubscriber`` script:

    python main.py init
    python main.py token store user@example.com
    python main.py scan user@example.com --limit 200
    python main.py attempts failed user@example.com
"""

from unsubscriber.cli import cli


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()
