"""
Tests for canonical pattern normalization.
"""
import pytest

from inbox_rules.models import RuleType
from inbox_rules.normalizer import normalize_exception, normalize_notes, normalize_pattern


class TestNormalizePattern:
    """Tests for normalize_pattern()."""

    def test_email_is_trimmed_and_lowercased(self):
        """Test EMAIL patterns are trimmed and lowercased."""
        assert normalize_pattern(RuleType.EMAIL, "  Boss@Example.COM ") == "boss@example.com"

    def test_domain_strips_leading_at(self):
        """Test DOMAIN patterns lose the leading @."""
        assert normalize_pattern(RuleType.DOMAIN, "@Example.COM") == "example.com"

    def test_domain_strips_at_after_whitespace(self):
        """Test surrounding whitespace does not hide the @ prefix."""
        assert normalize_pattern(RuleType.DOMAIN, "  @acme.com  ") == "acme.com"

    def test_domain_only_at_becomes_empty(self):
        """Test a lone @ normalizes to an empty pattern."""
        assert normalize_pattern(RuleType.DOMAIN, "@") == ""

    def test_topic_keeps_inner_whitespace(self):
        """Test TOPIC patterns are trimmed and lowercased but not collapsed."""
        assert normalize_pattern(RuleType.TOPIC, "  Quarterly  Report ") == "quarterly  report"

    def test_email_keeps_at(self):
        """Test only DOMAIN strips the @ prefix."""
        assert normalize_pattern(RuleType.EMAIL, "@odd") == "@odd"

    def test_accepts_type_as_string(self):
        """Test the rule type can be passed as its string value."""
        assert normalize_pattern("DOMAIN", "@Acme.com") == "acme.com"

    def test_invalid_type_raises(self):
        """Test an unknown type raises ValueError."""
        with pytest.raises(ValueError):
            normalize_pattern("PERSON", "x")

    @pytest.mark.parametrize("rule_type,pattern", [
        (RuleType.EMAIL, " Boss@Example.com "),
        (RuleType.DOMAIN, "@@Acme.com"),
        (RuleType.DOMAIN, "@ acme.com"),
        (RuleType.TOPIC, " Weekly DIGEST "),
    ])
    def test_idempotent(self, rule_type, pattern):
        """Test normalizing twice equals normalizing once."""
        once = normalize_pattern(rule_type, pattern)
        assert normalize_pattern(rule_type, once) == once


class TestNormalizeException:
    """Tests for normalize_exception()."""

    def test_trim_and_lowercase(self):
        """Test exception phrases are trimmed and lowercased."""
        assert normalize_exception("  URGENT ") == "urgent"

    def test_blank_becomes_none(self):
        """Test blank exception phrases are dropped."""
        assert normalize_exception("   ") is None

    def test_none_stays_none(self):
        """Test None passes through."""
        assert normalize_exception(None) is None


class TestNormalizeNotes:
    """Tests for normalize_notes()."""

    def test_notes_keep_case(self):
        """Test notes are trimmed but keep their case."""
        assert normalize_notes("  Keep Case ") == "Keep Case"

    def test_blank_notes_become_none(self):
        """Test blank notes are dropped."""
        assert normalize_notes("") is None
