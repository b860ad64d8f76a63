#!/usr/bin/env python3
"""
Main entry point for the inbox rule engine.

    python main.py parse "ignore everyone from acme.com"
    python main.py import-csv contacts.csv --action SUPPRESS
    python main.py sweep

See --help for available commands.
"""

from inbox_rules.cli import main


if __name__ == '__main__':
    main()
