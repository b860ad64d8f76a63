"""
Rule matcher.

Pure, read-only evaluation of a Subject against a list of rules. Nothing
here touches storage or shared state, so evaluations can run concurrently.

Per-rule predicate (both sides are already lowercased):
    EMAIL  -> subject.sender_email == rule.pattern
    DOMAIN -> subject.domain == rule.pattern
    TOPIC  -> rule.pattern in subject.title

Exception: a rule whose predicate matches is treated as non-matching when
its ``unless_contains`` substring appears in the subject title. The
exception applies to that rule only.

Rules are checked in the order given. All matches have the same effect, so
order only decides which rule is reported as ``fired_rule``.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from inbox_rules.models import Rule, RuleAction, RuleType, Subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuppressionDecision:
    suppressed: bool
    fired_rule: Optional[Rule] = None


@dataclass(frozen=True)
class VipDecision:
    is_vip: bool
    fired_rule: Optional[Rule] = None


def predicate_matches(subject: Subject, rule: Rule) -> bool:
    """The primary predicate for ``rule``, ignoring its exception."""
    if rule.type == RuleType.EMAIL:
        return subject.sender_email == rule.pattern
    if rule.type == RuleType.DOMAIN:
        domain = subject.domain
        return bool(domain) and domain == rule.pattern
    if rule.type == RuleType.TOPIC:
        return bool(rule.pattern) and rule.pattern in subject.title
    logger.warning(f"Unknown rule type: {rule.type}")
    return False


def is_excepted(subject: Subject, rule: Rule) -> bool:
    return bool(rule.unless_contains) and rule.unless_contains in subject.title


def rule_matches(subject: Subject, rule: Rule) -> bool:
    """Predicate match that is not overridden by the rule's exception."""
    return predicate_matches(subject, rule) and not is_excepted(subject, rule)


def first_match(subject: Subject, rules: Iterable[Rule], action: RuleAction) -> Optional[Rule]:
    """First rule with ``action`` that matches ``subject``, in the given order."""
    for rule in rules:
        if rule.action != action:
            continue
        if rule_matches(subject, rule):
            return rule
    return None


def evaluate(subject: Subject, rules: Iterable[Rule]) -> SuppressionDecision:
    """
    Decide whether ``subject`` is suppressed.

    Only SUPPRESS rules take part; VIP rules are ignored here.

    Example:
        >>> rule = Rule(id="r1", type=RuleType.EMAIL, pattern="vip@example.com",
        ...             action=RuleAction.SUPPRESS, created_at=now)
        >>> evaluate(Subject("V", "vip@example.com"), [rule]).suppressed
        True
    """
    fired = first_match(subject, rules, RuleAction.SUPPRESS)
    return SuppressionDecision(suppressed=fired is not None, fired_rule=fired)


def evaluate_vip(subject: Subject, rules: Iterable[Rule]) -> VipDecision:
    """VIP flagging; same predicate and exception semantics as evaluate()."""
    fired = first_match(subject, rules, RuleAction.VIP)
    return VipDecision(is_vip=fired is not None, fired_rule=fired)
