"""
Tests for the rule parser (heuristics, AI output validation, escalation).

The AI tier is exercised with a fake extractor; nothing here calls out.
"""
import pytest

from inbox_rules.errors import ErrorCode, ParseError
from inbox_rules.models import AuditAction, RuleAction, RuleType
from inbox_rules.rule_parser import (
    STRATEGY_AI,
    STRATEGY_HEURISTIC,
    RuleParser,
    apply_heuristics,
    parse_rule_text,
    validate_ai_output,
)


class TestApplyHeuristics:
    """Tests for apply_heuristics()."""

    def test_at_domain(self):
        """Test '@domain' becomes a DOMAIN rule without the @."""
        result = apply_heuristics("@Acme.com", RuleAction.VIP)
        assert not result.needs_ai
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "acme.com"
        assert result.rule.confidence == 0.95

    def test_bare_email(self):
        """Test a bare address becomes a lowercased EMAIL rule."""
        result = apply_heuristics("  Boss@Example.com ", RuleAction.VIP)
        assert not result.needs_ai
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.pattern == "boss@example.com"

    def test_bare_hostname(self):
        """Test a bare hostname becomes a DOMAIN rule."""
        result = apply_heuristics("news.acme.com", RuleAction.VIP)
        assert not result.needs_ai
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "news.acme.com"

    def test_single_domain_in_sentence(self):
        """Test one domain mentioned in an instruction is recognised."""
        result = apply_heuristics("ignore everyone from acme.com", RuleAction.VIP)
        assert not result.needs_ai
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "acme.com"
        assert result.rule.action == RuleAction.VIP

    def test_single_email_in_sentence_with_punctuation(self):
        """Test wrapping punctuation is stripped from a mentioned address."""
        result = apply_heuristics("Always flag <CEO@Acme.com>.", RuleAction.VIP)
        assert not result.needs_ai
        assert result.rule.type == RuleType.EMAIL
        assert result.rule.pattern == "ceo@acme.com"

    def test_exception_clause_needs_ai(self):
        """Test an 'unless' clause sends the text to the AI tier."""
        result = apply_heuristics("mute ops@acme.com unless it is urgent", RuleAction.SUPPRESS)
        assert result.needs_ai
        assert result.rule.type == RuleType.EMAIL

    def test_two_addresses_need_ai(self):
        """Test more than one address is ambiguous."""
        result = apply_heuristics("mute a@x.com and b@y.com", RuleAction.SUPPRESS)
        assert result.needs_ai

    def test_topic_guess_needs_ai(self):
        """Test text without addresses falls back to a low-confidence TOPIC guess."""
        result = apply_heuristics("Quarterly   report newsletters", RuleAction.VIP)
        assert result.needs_ai
        assert result.rule.type == RuleType.TOPIC
        assert result.rule.pattern == "quarterly report newsletters"
        assert result.rule.confidence == 0.4

    def test_empty_text(self):
        """Test empty text yields no rule and needs AI."""
        result = apply_heuristics("   ", RuleAction.VIP)
        assert result.rule is None
        assert result.needs_ai

    def test_default_action_applied(self):
        """Test heuristics use the supplied action."""
        result = apply_heuristics("acme.com", RuleAction.SUPPRESS)
        assert result.rule.action == RuleAction.SUPPRESS

    def test_deterministic(self):
        """Test the same input gives the same draft."""
        first = apply_heuristics("ignore everyone from acme.com", "VIP")
        second = apply_heuristics("ignore everyone from acme.com", "VIP")
        assert first == second

    @pytest.mark.parametrize("text", [
        "ignore anything about invoice.pdf",
        "mute threads mentioning node.js",
        "report.xlsx",
        "skip mails with photo.JPG attached",
    ])
    def test_file_names_are_not_domains(self, text):
        """Test dotted file and tool names escalate instead of becoming DOMAIN rules."""
        result = apply_heuristics(text, RuleAction.SUPPRESS)
        assert result.needs_ai
        assert result.rule.type == RuleType.TOPIC

    def test_file_name_beside_domain(self):
        """Test a file name does not count as a second address."""
        result = apply_heuristics("mute invoice.pdf from billing.acme.com", RuleAction.SUPPRESS)
        assert not result.needs_ai
        assert result.rule.type == RuleType.DOMAIN
        assert result.rule.pattern == "billing.acme.com"


class TestValidateAiOutput:
    """Tests for validate_ai_output()."""

    def test_valid_output_is_canonicalized(self):
        """Test pattern and exception are normalized."""
        raw = '{"type": "email", "pattern": " Boss@X.com ", "action": "SUPPRESS", "unless_contains": " URGENT "}'
        draft = validate_ai_output(raw)
        assert draft.type == RuleType.EMAIL
        assert draft.pattern == "boss@x.com"
        assert draft.action == RuleAction.SUPPRESS
        assert draft.unless_contains == "urgent"

    def test_code_fenced_output(self):
        """Test a markdown code fence around the JSON is tolerated."""
        raw = '```json\n{"type": "DOMAIN", "pattern": "@acme.com", "action": "VIP"}\n```'
        assert validate_ai_output(raw).pattern == "acme.com"

    def test_dict_output(self):
        """Test already-decoded objects are accepted."""
        draft = validate_ai_output({"type": "TOPIC", "pattern": "Invoices", "action": "VIP", "confidence": 0.7})
        assert draft.pattern == "invoices"
        assert draft.confidence == 0.7

    def test_invalid_json(self):
        """Test non-JSON output is rejected."""
        with pytest.raises(ParseError) as exc_info:
            validate_ai_output("I think this is a domain rule")
        assert exc_info.value.code == ErrorCode.PARSE_SCHEMA_INVALID

    def test_non_object_json(self):
        """Test a JSON array is rejected."""
        with pytest.raises(ParseError, match="JSON object"):
            validate_ai_output('[{"type": "EMAIL"}]')

    def test_schema_violation(self):
        """Test output with an unknown type is rejected."""
        with pytest.raises(ParseError) as exc_info:
            validate_ai_output('{"type": "PERSON", "pattern": "bob", "action": "VIP"}')
        assert exc_info.value.code == ErrorCode.PARSE_SCHEMA_INVALID

    def test_pattern_empty_after_normalization(self):
        """Test a DOMAIN pattern of '@' is rejected."""
        with pytest.raises(ParseError, match="empty"):
            validate_ai_output('{"type": "DOMAIN", "pattern": "@", "action": "VIP"}')


class TestRuleParser:
    """Tests for RuleParser.parse() and the AI escalation path."""

    def test_heuristic_parse_does_not_call_extractor(self, fake_extractor):
        """Test recognised text never reaches the extractor."""
        extractor = fake_extractor(response={"type": "TOPIC", "pattern": "x", "action": "VIP"})
        result = RuleParser(extractor=extractor).parse("ignore everyone from acme.com")
        assert result.strategy == STRATEGY_HEURISTIC
        assert result.rule.pattern == "acme.com"
        assert extractor.calls == []

    def test_empty_input(self):
        """Test blank input is rejected."""
        with pytest.raises(ParseError) as exc_info:
            RuleParser().parse("   ")
        assert exc_info.value.code == ErrorCode.PARSE_EMPTY_INPUT

    def test_no_extractor(self, audit):
        """Test AI-needing text without an extractor fails and is audited."""
        parser = RuleParser(extractor=None, audit=audit)
        with pytest.raises(ParseError) as exc_info:
            parser.parse("mute the weekly newsletters")
        assert exc_info.value.code == ErrorCode.PARSE_AI_UNAVAILABLE

        events = audit.list_events()
        assert len(events) == 1
        assert events[0].action == AuditAction.PARSER_FALLBACK
        assert events[0].details['outcome'] == "unavailable"

    def test_ai_success(self, audit, fake_extractor):
        """Test valid extractor output is returned with strategy 'ai'."""
        extractor = fake_extractor(response={
            "type": "TOPIC", "pattern": "Newsletter", "action": "SUPPRESS",
            "unless_contains": "Urgent", "confidence": 0.7,
        })
        parser = RuleParser(extractor=extractor, audit=audit)

        result = parser.parse("mute newsletters unless urgent", default_action=RuleAction.SUPPRESS, actor="ann")

        assert result.strategy == STRATEGY_AI
        assert result.rule.pattern == "newsletter"
        assert result.rule.unless_contains == "urgent"
        assert extractor.calls == [("mute newsletters unless urgent", RuleAction.SUPPRESS)]

        event = audit.list_events()[0]
        assert event.details['outcome'] == "accepted"
        assert event.actor == "ann"

    def test_default_action_from_parser(self, fake_extractor):
        """Test the parser's default action is passed to the extractor."""
        extractor = fake_extractor(response={"type": "TOPIC", "pattern": "x", "action": "SUPPRESS"})
        RuleParser(extractor=extractor, default_action=RuleAction.SUPPRESS).parse("mute this topic")
        assert extractor.calls[0][1] == RuleAction.SUPPRESS

    def test_extractor_error(self, audit, fake_extractor):
        """Test extractor failures become PARSE_AI_FAILED."""
        parser = RuleParser(extractor=fake_extractor(error=RuntimeError("timeout")), audit=audit)
        with pytest.raises(ParseError) as exc_info:
            parser.parse("mute the weekly newsletters")
        assert exc_info.value.code == ErrorCode.PARSE_AI_FAILED
        assert audit.list_events()[0].details['outcome'] == "error"

    def test_extractor_output_rejected(self, audit, fake_extractor):
        """Test schema-invalid extractor output is rejected and audited."""
        parser = RuleParser(extractor=fake_extractor(response='{"type": "EMAIL"}'), audit=audit)
        with pytest.raises(ParseError) as exc_info:
            parser.parse("mute the weekly newsletters")
        assert exc_info.value.code == ErrorCode.PARSE_SCHEMA_INVALID
        assert audit.list_events()[0].details['outcome'] == "rejected"

    def test_fallback_audit_redacts_input(self, audit):
        """Test addresses in the audited input are masked."""
        parser = RuleParser(extractor=None, audit=audit)
        with pytest.raises(ParseError):
            parser.parse("mute ops@acme.com and billing@acme.com")
        event = audit.list_events()[0]
        assert event.details['input'] == "mute op***@acme.com and bi***@acme.com"
        assert len(event.entity_id) == 16

    def test_fallback_audit_masks_before_truncating(self, audit):
        """Test an address straddling the length limit is never stored partially unmasked."""
        prefix = "mute unless urgent "
        # The 200-character cut falls three characters into the local part
        text = prefix + "x" * (200 - len(prefix) - 4) + " secretperson@acme.com"
        parser = RuleParser(extractor=None, audit=audit)
        with pytest.raises(ParseError):
            parser.parse(text)
        stored = audit.list_events()[0].details['input']
        assert len(stored) == 200
        assert "sec" not in stored
        assert stored.endswith(" se*")

    def test_parse_rule_text_function(self):
        """Test the module-level convenience wrapper."""
        result = parse_rule_text("@acme.com", default_action="SUPPRESS")
        assert result.rule.action == RuleAction.SUPPRESS
        assert result.to_dict()['strategy'] == STRATEGY_HEURISTIC
