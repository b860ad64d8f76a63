"""
Rule engine facade.

RuleEngine is the context object for a process: it is built once from an
EngineSettings instance and owns the database, audit log, rule store,
parser and sweep. API handlers and the CLI call its methods, which return
plain dictionaries in the wire format.

Example:
    >>> engine = RuleEngine(load_settings('config/config.yaml'))
    >>> engine.parse("ignore everyone from acme.com")
    {'rule': {'type': 'DOMAIN', 'pattern': 'acme.com', ...}, 'strategy': 'heuristic'}
    >>> engine.import_rules([{'type': 'EMAIL', 'pattern': 'a@b.com', 'action': 'VIP'}])
    {'count': 1}
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from inbox_rules.audit import AuditLog
from inbox_rules.config_schema import EngineSettings
from inbox_rules.csv_import import analyze_csv
from inbox_rules.database import TriageDatabase
from inbox_rules.llm_client import OpenRouterRuleExtractor, TextToRule
from inbox_rules.models import RuleAction
from inbox_rules.rule_parser import RuleParser
from inbox_rules.rule_store import RuleStore
from inbox_rules.sweep import SuppressionSweep

logger = logging.getLogger(__name__)

BULK_IMPORT_ACTOR = "csv-import"
BULK_IMPORT_REASON = "bulk-import"


class RuleEngine:
    """
    Wires the rule engine components together.

    Args:
        settings: Validated configuration
        database: Optional database (defaults to settings.database.path)
        extractor: Optional TextToRule; defaults to the OpenRouter extractor
            when AI is enabled in settings
    """

    def __init__(
        self,
        settings: EngineSettings,
        database: Optional[TriageDatabase] = None,
        extractor: Optional[TextToRule] = None
    ):
        self.settings = settings
        self.database = database or TriageDatabase(settings.database.path)
        self.audit = AuditLog(self.database, async_writes=settings.audit.async_writes)

        if extractor is None and settings.ai.enabled:
            extractor = OpenRouterRuleExtractor(settings)

        self.parser = RuleParser(
            extractor=extractor,
            audit=self.audit,
            default_action=settings.parser.default_action
        )
        self.rules = RuleStore(self.database, self.audit)
        self.sweep = SuppressionSweep(self.database, max_workers=settings.sweep.max_workers)

    def parse(
        self,
        text: str,
        default_action: Optional[Union[RuleAction, str]] = None,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """Free text -> {'rule': <record>, 'strategy': 'heuristic'|'ai'}. Nothing is stored."""
        return self.parser.parse(text, default_action=default_action, actor=actor).to_dict()

    def create_rule(self, payload: Any, actor: Optional[str] = None) -> Dict[str, Any]:
        return self.rules.create_rule(payload, actor=actor).to_dict()

    def import_rules(self, records: Sequence[Any], actor: Optional[str] = None) -> Dict[str, int]:
        """
        Bulk import; rejects an empty list before touching the store.

        Returns:
            {'count': <number of rules created after deduplication>}
        """
        created = self.rules.create_rules_bulk(
            records,
            actor=actor or BULK_IMPORT_ACTOR,
            reason=BULK_IMPORT_REASON
        )
        return {'count': len(created)}

    def delete_rule(self, rule_id: str, actor: Optional[str] = None) -> Dict[str, bool]:
        self.rules.delete_rule(rule_id, actor=actor)
        return {'ok': True}

    def list_rules(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules.list_rules()]

    def analyze_csv(self, text: str, default_action: Optional[Union[RuleAction, str]] = None) -> Dict[str, Any]:
        action = default_action or self.settings.parser.default_action
        return analyze_csv(text, self.parser, default_action=action).to_dict()

    def run_sweep(self) -> Dict[str, int]:
        return self.sweep.run().to_dict()

    def audit_events(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        self.audit.flush()
        return [event.to_dict() for event in self.audit.list_events(limit or self.settings.audit.list_limit)]

    def close(self) -> None:
        """Flush pending audit writes and close the database."""
        self.audit.close()
        self.database.close()

    def __enter__(self) -> 'RuleEngine':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
