"""
Test fixtures and helpers for the rule engine tests.

This module provides:
- Environment and logging isolation
- A file-backed SQLite database per test
- Synchronous audit log and rule store fixtures
- A fake TextToRule extractor (no network)
- Settings with AI disabled and inline audit writes
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import pytest

from inbox_rules.audit import AuditLog
from inbox_rules.config_schema import EngineSettings
from inbox_rules.database import TriageDatabase
from inbox_rules.logging_context import clear_context
from inbox_rules.models import Rule, RuleAction, RuleType
from inbox_rules.rule_store import RuleStore


class FakeExtractor:
    """TextToRule stand-in that returns a canned answer or raises."""

    def __init__(self, response: Union[str, Dict[str, Any], None] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[tuple] = []

    def extract_rule(self, text: str, default_action: RuleAction) -> str:
        self.calls.append((text, default_action))
        if self.error is not None:
            raise self.error
        if isinstance(self.response, dict):
            return json.dumps(self.response)
        return self.response


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment variables out of config and logging tests."""
    for key in list(os.environ):
        if key.startswith('INBOX_RULES_') or key.startswith('LOG_'):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv('OPENROUTER_API_KEY', raising=False)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo init_logging() so caplog sees records again."""
    yield
    root_logger = logging.getLogger('inbox_rules')
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.NOTSET)
    root_logger.propagate = True
    clear_context()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "rules.db"


@pytest.fixture
def database(db_path):
    db = TriageDatabase(db_path)
    yield db
    db.close()


@pytest.fixture
def audit(database):
    """Audit log that writes inline, so tests can read events immediately."""
    return AuditLog(database, async_writes=False)


@pytest.fixture
def store(database, audit):
    return RuleStore(database, audit)


@pytest.fixture
def settings(db_path):
    """Settings with AI disabled and synchronous audit writes."""
    return EngineSettings(
        database={'path': str(db_path)},
        ai={'enabled': False},
        audit={'async_writes': False},
        sweep={'max_workers': 4},
    )


@pytest.fixture
def make_rule():
    """Factory for in-memory Rule objects (not persisted)."""
    counter = {'n': 0}

    def _make(
        rule_type: RuleType,
        pattern: str,
        action: RuleAction = RuleAction.SUPPRESS,
        unless_contains: Optional[str] = None,
    ) -> Rule:
        counter['n'] += 1
        return Rule(
            id=f"rule-{counter['n']}",
            type=rule_type,
            pattern=pattern,
            action=action,
            created_at=datetime.now(timezone.utc),
            unless_contains=unless_contains,
        )

    return _make


@pytest.fixture
def fake_extractor():
    """Factory for FakeExtractor instances."""
    return FakeExtractor
