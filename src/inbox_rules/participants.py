"""
Thread participant decoding.

Threads store participants as a JSON array of "Name <email>" strings, but
older rows hold a bare string or malformed text. decode_participants() does
the tagged decode once, and build_subject() turns the result into the
Subject the matcher consumes. None of these functions raise.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from inbox_rules.models import Subject

logger = logging.getLogger(__name__)

UNKNOWN_SENDER = "Unknown"
UNKNOWN_EMAIL = "unknown"

ANGLE_ADDRESS = re.compile(r"<([^<>\s]+@[^<>\s]+)>")


class ParticipantEncoding(Enum):
    """How the raw participants field was stored."""
    EMPTY = "empty"
    JSON_LIST = "json_list"
    TEXT = "text"


@dataclass
class DecodedParticipants:
    encoding: ParticipantEncoding
    entries: List[str] = field(default_factory=list)
    raw: Optional[str] = None


@dataclass(frozen=True)
class Sender:
    name: str
    email: str


def decode_participants(raw: Optional[str]) -> DecodedParticipants:
    """
    Classify and decode a raw participants value.

    - None / blank / empty JSON array       -> EMPTY
    - JSON array with a leading string entry -> JSON_LIST (string entries only)
    - anything else                          -> TEXT (the raw string)
    """
    if raw is None or not str(raw).strip():
        return DecodedParticipants(ParticipantEncoding.EMPTY, raw=raw)

    raw = str(raw)
    try:
        parsed = json.loads(raw)
    except (ValueError, TypeError):
        return DecodedParticipants(ParticipantEncoding.TEXT, entries=[raw], raw=raw)

    if isinstance(parsed, list):
        if not parsed:
            return DecodedParticipants(ParticipantEncoding.EMPTY, raw=raw)
        if isinstance(parsed[0], str) and parsed[0].strip():
            entries = [entry for entry in parsed if isinstance(entry, str) and entry.strip()]
            return DecodedParticipants(ParticipantEncoding.JSON_LIST, entries=entries, raw=raw)

    return DecodedParticipants(ParticipantEncoding.TEXT, entries=[raw], raw=raw)


def _extract_sender(entry: str) -> Optional[Sender]:
    """
    Name and address from the first "<email>" found in ``entry``.

    The name is the text before the bracket with outer quotes removed.
    Anything after it (comments, further participants) is ignored.
    """
    match = ANGLE_ADDRESS.search(entry)
    if not match:
        return None
    email = match.group(1).lower()
    name = entry[:match.start()].strip().strip('"').strip() or email
    return Sender(name=name, email=email)


def parse_participant(raw: Optional[str]) -> Sender:
    """
    First participant of a thread as (name, lowercased email).

    Falls back to the raw string as both name and email when it cannot be
    decoded, and to ("Unknown", "unknown") when there is nothing to decode.

    Example:
        >>> parse_participant('["Ann <Ann@Example.com>"]')
        Sender(name='Ann', email='ann@example.com')
        >>> parse_participant("garbled###")
        Sender(name='garbled###', email='garbled###')
    """
    decoded = decode_participants(raw)

    if decoded.encoding == ParticipantEncoding.EMPTY:
        return Sender(name=UNKNOWN_SENDER, email=UNKNOWN_EMAIL)

    if decoded.encoding == ParticipantEncoding.JSON_LIST:
        sender = _extract_sender(decoded.entries[0])
        if sender:
            return sender
        first = decoded.entries[0].strip()
        return Sender(name=first, email=first.lower())

    text = decoded.raw.strip()
    sender = _extract_sender(text)
    if sender:
        return sender
    return Sender(name=text, email=text.lower())


def build_subject(participants_raw: Optional[str], title: Optional[str]) -> Subject:
    """Decode thread data once into the Subject evaluated by the matcher."""
    sender = parse_participant(participants_raw)
    return Subject(
        sender=sender.name,
        sender_email=sender.email,
        title=(title or "").lower(),
    )
