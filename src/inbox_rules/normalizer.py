"""
Canonical pattern normalization.

Canonical patterns are used for storage and for equality/dedup comparisons.
Every function here is idempotent: normalizing twice gives the same result
as normalizing once.
"""
import string
from typing import Optional, Union

from inbox_rules.models import RuleType


def normalize_pattern(rule_type: Union[RuleType, str], pattern: str) -> str:
    """
    Return the canonical form of ``pattern`` for ``rule_type``.

    - EMAIL: trim, lowercase
    - DOMAIN: trim, strip the leading "@", lowercase
    - TOPIC: trim, lowercase

    Example:
        >>> normalize_pattern(RuleType.DOMAIN, "@Example.COM")
        'example.com'
    """
    rule_type = RuleType(rule_type)
    trimmed = pattern.strip()

    if rule_type == RuleType.DOMAIN:
        # Repeated "@"/space prefixes ("@@x", "@ x") collapse in one pass
        return trimmed.lstrip("@" + string.whitespace).lower()

    return trimmed.lower()


def normalize_exception(value: Optional[str]) -> Optional[str]:
    """Canonical ``unless_contains``: trimmed, lowercased, blank -> None."""
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None


def normalize_notes(value: Optional[str]) -> Optional[str]:
    """Notes are free text: trimmed only, blank -> None."""
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None
