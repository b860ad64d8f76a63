"""
Tests for the rule store (create, bulk import, delete, list).
"""
import sqlite3
from unittest.mock import patch

import pytest

from inbox_rules.database import TriageDatabase
from inbox_rules.errors import ErrorCode, NotFoundError, StoreError, ValidationError
from inbox_rules.models import AuditAction, RuleAction, RuleType


class TestCreateRule:
    """Tests for RuleStore.create_rule()."""

    def test_pattern_is_canonicalized(self, store):
        """Test the stored pattern is in canonical form."""
        rule = store.create_rule({'type': 'DOMAIN', 'pattern': ' @Acme.COM ', 'action': 'suppress'})
        assert rule.pattern == 'acme.com'
        assert rule.action == RuleAction.SUPPRESS
        assert store.get_rule(rule.id) == rule

    def test_exception_and_notes_cleaned(self, store):
        """Test unless_contains is lowercased and notes are trimmed."""
        rule = store.create_rule({
            'type': 'EMAIL', 'pattern': 'boss@acme.com', 'action': 'VIP',
            'unless_contains': ' Out Of Office ', 'notes': '  CEO  ',
        })
        assert rule.unless_contains == 'out of office'
        assert rule.notes == 'CEO'

    def test_audit_event_recorded(self, store, audit):
        """Test creation records RULE_CREATED with the actor."""
        rule = store.create_rule({'type': 'EMAIL', 'pattern': 'boss@acme.com', 'action': 'VIP'}, actor='ann')
        events = audit.list_events()
        assert len(events) == 1
        assert events[0].action == AuditAction.RULE_CREATED
        assert events[0].entity_id == rule.id
        assert events[0].actor == 'ann'
        assert events[0].details['pattern'] == 'bo***@acme.com'

    def test_invalid_record_stores_nothing(self, store, audit):
        """Test a malformed record is rejected without side effects."""
        with pytest.raises(ValidationError):
            store.create_rule({'type': 'EMAIL', 'action': 'VIP'})
        assert store.list_rules() == []
        assert audit.list_events() == []

    def test_pattern_empty_after_normalization(self, store):
        """Test a DOMAIN pattern of '@' is rejected."""
        with pytest.raises(ValidationError, match="empty after normalization"):
            store.create_rule({'type': 'DOMAIN', 'pattern': '@', 'action': 'VIP'})

    def test_audit_failure_does_not_block_create(self, store, database):
        """Test a failing audit write never fails the mutation."""
        with patch.object(database, 'insert_audit_event', side_effect=StoreError("disk full")):
            rule = store.create_rule({'type': 'TOPIC', 'pattern': 'invoice', 'action': 'VIP'})
        assert store.get_rule(rule.id).pattern == 'invoice'


class TestCreateRulesBulk:
    """Tests for RuleStore.create_rules_bulk()."""

    def test_duplicates_collapse(self, store):
        """Test records that differ only in case or whitespace collapse to one."""
        created = store.create_rules_bulk([
            {'type': 'EMAIL', 'pattern': 'Boss@X.com', 'action': 'VIP'},
            {'type': 'EMAIL', 'pattern': ' boss@x.com ', 'action': 'VIP'},
            {'type': 'email', 'pattern': 'BOSS@X.COM', 'action': 'vip'},
        ])
        assert len(created) == 1
        assert len(store.list_rules()) == 1

    def test_first_occurrence_kept(self, store):
        """Test the first of a set of duplicates is the one stored."""
        created = store.create_rules_bulk([
            {'type': 'TOPIC', 'pattern': 'Invoice', 'action': 'VIP', 'confidence': 0.9},
            {'type': 'TOPIC', 'pattern': 'invoice', 'action': 'VIP', 'confidence': 0.2},
        ])
        assert created[0].confidence == 0.9

    def test_different_notes_are_distinct(self, store):
        """Test notes are part of rule identity."""
        created = store.create_rules_bulk([
            {'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP', 'notes': 'one'},
            {'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP', 'notes': 'two'},
        ])
        assert len(created) == 2

    def test_same_pattern_different_action(self, store):
        """Test the same pattern may exist as VIP and SUPPRESS."""
        created = store.create_rules_bulk([
            {'type': 'DOMAIN', 'pattern': 'acme.com', 'action': 'VIP'},
            {'type': 'DOMAIN', 'pattern': 'acme.com', 'action': 'SUPPRESS'},
        ])
        assert {rule.action for rule in created} == {RuleAction.VIP, RuleAction.SUPPRESS}

    def test_empty_payload(self, store):
        """Test an empty list is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            store.create_rules_bulk([])
        assert exc_info.value.code == ErrorCode.IMPORT_EMPTY

    def test_one_bad_record_rejects_batch(self, store, audit):
        """Test validation is all-or-nothing."""
        with pytest.raises(ValidationError) as exc_info:
            store.create_rules_bulk([
                {'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP'},
                {'type': 'EMAIL', 'pattern': 'b@x.com', 'action': 'MAYBE'},
            ])
        assert exc_info.value.issues[0]['index'] == 1
        assert store.list_rules() == []
        assert audit.list_events() == []

    def test_store_failure_rolls_back(self, store, audit, monkeypatch):
        """Test a failure part-way through the insert leaves no rules behind."""
        original = TriageDatabase._insert_rule
        calls = {'n': 0}

        def flaky_insert(self, conn, draft):
            calls['n'] += 1
            if calls['n'] == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return original(self, conn, draft)

        monkeypatch.setattr(TriageDatabase, '_insert_rule', flaky_insert)

        with pytest.raises(StoreError):
            store.create_rules_bulk([
                {'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP'},
                {'type': 'EMAIL', 'pattern': 'b@x.com', 'action': 'VIP'},
            ])

        assert store.list_rules() == []
        assert audit.list_events() == []

    def test_audit_event_per_rule(self, store, audit):
        """Test each created rule gets its own RULE_CREATED event."""
        created = store.create_rules_bulk([
            {'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP'},
            {'type': 'DOMAIN', 'pattern': 'x.com', 'action': 'SUPPRESS'},
        ], actor='csv-import', reason='bulk-import')

        events = audit.list_events()
        assert len(events) == 2
        assert {event.entity_id for event in events} == {rule.id for rule in created}
        assert all(event.details['reason'] == 'bulk-import' for event in events)
        assert all(event.actor == 'csv-import' for event in events)


class TestDeleteRule:
    """Tests for RuleStore.delete_rule()."""

    def test_delete(self, store, audit):
        """Test a rule is removed and RULE_DELETED is recorded."""
        rule = store.create_rule({'type': 'TOPIC', 'pattern': 'invoice', 'action': 'SUPPRESS'})
        store.delete_rule(rule.id, actor='ann')

        assert store.list_rules() == []
        event = audit.list_events()[0]
        assert event.action == AuditAction.RULE_DELETED
        assert event.details['pattern'] == 'invoice'
        assert event.actor == 'ann'

    def test_unknown_id(self, store, audit):
        """Test deleting an unknown id raises and records nothing."""
        with pytest.raises(NotFoundError) as exc_info:
            store.delete_rule('missing')
        assert exc_info.value.code == ErrorCode.RULE_NOT_FOUND
        assert audit.list_events() == []

    def test_delete_twice(self, store):
        """Test a second delete of the same id is not found."""
        rule = store.create_rule({'type': 'TOPIC', 'pattern': 'invoice', 'action': 'SUPPRESS'})
        store.delete_rule(rule.id)
        with pytest.raises(NotFoundError):
            store.delete_rule(rule.id)


class TestListRules:
    """Tests for RuleStore.list_rules()."""

    def test_newest_first(self, store):
        """Test rules are listed in reverse creation order."""
        first = store.create_rule({'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP'})
        second = store.create_rule({'type': 'EMAIL', 'pattern': 'b@x.com', 'action': 'VIP'})
        third = store.create_rule({'type': 'EMAIL', 'pattern': 'c@x.com', 'action': 'VIP'})
        assert [rule.id for rule in store.list_rules()] == [third.id, second.id, first.id]

    def test_filter_by_action(self, store):
        """Test listing only SUPPRESS rules."""
        store.create_rule({'type': 'EMAIL', 'pattern': 'a@x.com', 'action': 'VIP'})
        suppress = store.create_rule({'type': 'DOMAIN', 'pattern': 'x.com', 'action': 'SUPPRESS'})
        assert [rule.id for rule in store.list_rules(RuleAction.SUPPRESS)] == [suppress.id]

    def test_rules_survive_reopen(self, store, db_path):
        """Test rules are persisted to the database file."""
        rule = store.create_rule({'type': 'DOMAIN', 'pattern': 'acme.com', 'action': 'VIP'})
        reopened = TriageDatabase(db_path)
        try:
            stored = reopened.get_rule(rule.id)
            assert stored.type == RuleType.DOMAIN
            assert stored.pattern == 'acme.com'
        finally:
            reopened.close()
