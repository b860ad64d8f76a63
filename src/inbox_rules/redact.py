"""
PII redaction helpers.

Email-shaped substrings are masked by keeping the first two characters of the
local part and replacing the rest with a fixed marker; the domain is kept.

    >>> mask_email("Contact alice@example.com")
    'Contact al***@example.com'
"""
import logging
import re
from typing import Any, Dict

logger = logging.getLogger(__name__)

MASK_MARKER = "***"

EMAIL_MASK = re.compile(r"([A-Za-z0-9._%+-]+)@([A-Za-z0-9.-]+)")


def mask_email(text: str) -> str:
    """Mask the local part of every email-shaped substring in ``text``."""
    def _mask(match: "re.Match[str]") -> str:
        local, domain = match.group(1), match.group(2)
        return f"{local[:2]}{MASK_MARKER}@{domain}"

    return EMAIL_MASK.sub(_mask, text)


def redact_value(value: Any) -> Any:
    """
    Recursively redact strings inside mappings and sequences.

    Non-string scalars are returned unchanged. Tuples come back as lists.
    """
    if isinstance(value, str):
        return mask_email(value)

    if isinstance(value, dict):
        return {key: redact_value(entry) for key, entry in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [redact_value(entry) for entry in value]

    return value


def safe_log(prefix: str, data: Dict[str, Any], level: int = logging.INFO) -> None:
    """Log ``data`` under ``prefix`` after redaction."""
    logger.log(level, f"{prefix} {redact_value(data)}")
