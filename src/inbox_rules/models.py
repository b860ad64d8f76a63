"""
Data models for the rule engine.

This module contains the enums and data classes shared across the parser,
store, matcher and sweep.

Integration Pattern:
    Rules are created once (canonical pattern) and read many times:

    1. Parsing: RuleParser produces a RuleDraft from free text
    2. Storage: RuleStore canonicalizes the draft into a persisted Rule
    3. Evaluation: build_subject() decodes thread data into a Subject,
       and the matcher evaluates the Subject against a list of Rules

    Example:
        subject = build_subject(thread.participants, task.title)
        decision = evaluate(subject, rules)
        if decision.suppressed:
            database.delete_task(task.id)
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class RuleType(str, Enum):
    """What part of a message a rule looks at."""
    EMAIL = "EMAIL"
    DOMAIN = "DOMAIN"
    TOPIC = "TOPIC"


class RuleAction(str, Enum):
    """
    What happens when a rule matches.

    Values:
        VIP: Flag the sender/domain/topic as high priority
        SUPPRESS: Delete or exclude matching tasks
    """
    VIP = "VIP"
    SUPPRESS = "SUPPRESS"


class AuditAction(str, Enum):
    """Lifecycle events recorded in the audit log."""
    RULE_CREATED = "RULE_CREATED"
    RULE_UPDATED = "RULE_UPDATED"
    RULE_DELETED = "RULE_DELETED"
    CONFIG_UPDATED = "CONFIG_UPDATED"
    PARSER_FALLBACK = "PARSER_FALLBACK"


SYSTEM_ACTOR = "system"


@dataclass
class RuleDraft:
    """
    A rule that has been parsed or validated but not persisted.

    Field names follow the wire shape (``unless_contains``) so a draft can be
    handed straight back to callers or to RuleStore.create_rule().
    """
    type: RuleType
    pattern: str
    action: RuleAction
    unless_contains: Optional[str] = None
    notes: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary format."""
        return {
            "type": self.type.value,
            "pattern": self.pattern,
            "action": self.action.value,
            "unless_contains": self.unless_contains,
            "notes": self.notes,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Rule:
    """
    A persisted VIP/suppression rule.

    ``pattern`` is always in canonical form for ``type`` (see normalizer);
    it is never re-derived after creation.
    """
    id: str
    type: RuleType
    pattern: str
    action: RuleAction
    created_at: datetime
    unless_contains: Optional[str] = None
    notes: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Storage view in the wire format."""
        return {
            "id": self.id,
            "type": self.type.value,
            "pattern": self.pattern,
            "action": self.action.value,
            "unless_contains": self.unless_contains,
            "notes": self.notes,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of a rule lifecycle action."""
    id: str
    actor: str
    action: AuditAction
    entity: str
    entity_id: str
    created_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass(frozen=True)
class Subject:
    """
    Per-evaluation view of a thread: who sent it and what it is about.

    ``sender_email`` and ``title`` are lowercased at extraction time.
    """
    sender: str
    sender_email: str
    title: str = ""

    @property
    def domain(self) -> str:
        """Substring after ``@`` in the sender address, or empty."""
        if "@" not in self.sender_email:
            return ""
        return self.sender_email.split("@", 1)[1]


@dataclass
class TaskRecord:
    """A task row joined with the raw data of its thread (if any)."""
    id: str
    title: str
    thread_id: Optional[str] = None
    participants: Optional[str] = None

    @property
    def has_thread(self) -> bool:
        return self.thread_id is not None
