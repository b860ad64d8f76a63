"""
VIP/suppression rule engine for inbox triage.

Turns free-text rule descriptions into canonical matching rules, stores them,
and evaluates them against message/thread metadata.

Usage:
    >>> from inbox_rules.config import load_settings
    >>> from inbox_rules.engine import RuleEngine
    >>>
    >>> engine = RuleEngine(load_settings())
    >>> engine.parse("ignore everyone from acme.com")
    {'rule': {...}, 'strategy': 'heuristic'}
"""

__version__ = '0.1.0'
