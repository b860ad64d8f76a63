"""
Rule store.

Creates, deletes and lists rules on top of the database layer. This is the
only place patterns are canonicalized; stored rules are never rewritten.

Audit events are emitted after the mutation has committed. They go through
AuditLog, which never raises, so a broken audit trail cannot roll back or
block a rule mutation.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from inbox_rules.audit import AuditLog
from inbox_rules.database import TriageDatabase
from inbox_rules.errors import ErrorCode, NotFoundError, ValidationError
from inbox_rules.models import AuditAction, Rule, RuleAction, RuleDraft, RuleType
from inbox_rules.normalizer import normalize_exception, normalize_notes, normalize_pattern
from inbox_rules.redact import safe_log
from inbox_rules.schema import RuleRecord, validate_record, validate_records

logger = logging.getLogger(__name__)

RULE_ENTITY = "rule"

DedupKey = Tuple[RuleType, str, RuleAction, Optional[str], Optional[str]]


def canonicalize(record: RuleRecord) -> RuleDraft:
    """
    Canonical draft for a validated record.

    Raises:
        ValidationError: If the pattern is empty once normalized (e.g. "@")
    """
    pattern = normalize_pattern(record.type, record.pattern)
    if not pattern:
        raise ValidationError(
            f"Pattern '{record.pattern}' is empty after normalization",
            code=ErrorCode.RULE_INVALID
        )
    return RuleDraft(
        type=record.type,
        pattern=pattern,
        action=record.action,
        unless_contains=normalize_exception(record.unless_contains),
        notes=normalize_notes(record.notes),
        confidence=record.confidence,
    )


def dedup_key(draft: RuleDraft) -> DedupKey:
    """Identity of a canonical draft for in-batch deduplication."""
    return (draft.type, draft.pattern, draft.action, draft.unless_contains, draft.notes)


def _audit_details(rule: Rule, **extra: Any) -> Dict[str, Any]:
    details = {
        'type': rule.type.value,
        'pattern': rule.pattern,
        'action': rule.action.value,
    }
    if rule.unless_contains:
        details['unless_contains'] = rule.unless_contains
    details.update({key: value for key, value in extra.items() if value is not None})
    return details


class RuleStore:
    """
    Rule lifecycle operations.

    Args:
        database: Persistence layer
        audit: Audit log that receives lifecycle events
    """

    def __init__(self, database: TriageDatabase, audit: AuditLog):
        self._database = database
        self._audit = audit

    def create_rule(self, data: Any, actor: Optional[str] = None) -> Rule:
        """
        Validate, canonicalize and persist one rule.

        Args:
            data: Wire-format dict, RuleRecord or RuleDraft
            actor: Who asked for it (defaults to the system actor)

        Raises:
            ValidationError: If the record is malformed (nothing is stored)
            StoreError: If persistence fails
        """
        draft = canonicalize(validate_record(data))
        rule = self._database.insert_rule(draft)
        logger.info(f"Created {rule.action.value} rule {rule.id} ({rule.type.value})")
        safe_log("Stored rule", rule.to_dict(), level=logging.DEBUG)

        self._audit.record(
            AuditAction.RULE_CREATED, RULE_ENTITY, rule.id,
            details=_audit_details(rule), actor=actor
        )
        return rule

    def create_rules_bulk(
        self,
        items: Iterable[Any],
        actor: Optional[str] = None,
        reason: Optional[str] = None
    ) -> List[Rule]:
        """
        Create many rules atomically, collapsing duplicates.

        The whole payload is validated first; one bad record rejects the
        batch. Records whose canonical (type, pattern, action,
        unless_contains, notes) tuple was already seen are dropped silently,
        keeping the first occurrence. Survivors are written in a single
        transaction, and one RULE_CREATED event per rule follows the commit.

        Raises:
            ValidationError: Empty payload or any malformed record
            StoreError: If the transaction fails (no rule is stored)
        """
        items = list(items)
        records = validate_records(items)

        drafts: List[RuleDraft] = []
        seen = set()
        issues = []
        for index, record in enumerate(records):
            try:
                draft = canonicalize(record)
            except ValidationError as e:
                issues.append({'index': index, 'errors': [e.message]})
                continue
            key = dedup_key(draft)
            if key in seen:
                continue
            seen.add(key)
            drafts.append(draft)

        if issues:
            raise ValidationError(
                f"Invalid rules payload: {len(issues)} of {len(items)} record(s) rejected",
                code=ErrorCode.RULE_INVALID,
                issues=issues
            )

        created = self._database.insert_rules(drafts)
        duplicates = len(records) - len(drafts)
        logger.info(f"Bulk created {len(created)} rule(s), collapsed {duplicates} duplicate(s)")

        for rule in created:
            self._audit.record(
                AuditAction.RULE_CREATED, RULE_ENTITY, rule.id,
                details=_audit_details(rule, reason=reason), actor=actor
            )
        return created

    def get_rule(self, rule_id: str) -> Rule:
        """
        Raises:
            NotFoundError: If no rule has this id
        """
        rule = self._database.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule not found: {rule_id}", context={'rule_id': rule_id})
        return rule

    def delete_rule(self, rule_id: str, actor: Optional[str] = None) -> None:
        """
        Delete a rule by id.

        Raises:
            NotFoundError: If the id is unknown (no store mutation happens)
            StoreError: If persistence fails
        """
        rule = self.get_rule(rule_id)
        details = _audit_details(rule)

        if not self._database.delete_rule(rule_id):
            # Deleted concurrently between lookup and delete
            raise NotFoundError(f"Rule not found: {rule_id}", context={'rule_id': rule_id})

        logger.info(f"Deleted rule {rule_id}")
        self._audit.record(AuditAction.RULE_DELETED, RULE_ENTITY, rule_id, details=details, actor=actor)

    def list_rules(self, action: Optional[RuleAction] = None) -> List[Rule]:
        """Rules newest-created first."""
        return self._database.list_rules(action)
