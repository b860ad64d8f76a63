"""
Rule parser: free text -> draft rule.

Parsing is two-tier:

1. apply_heuristics() is a pure, deterministic function that recognises
   bare addresses and domains, and a single address or domain mentioned in
   a short instruction ("ignore everyone from acme.com").
2. Anything else escalates to a pluggable TextToRule extractor (AI). Its
   output is untrusted and must pass the rule schema before it is returned.

The heuristic tier never calls out; the same text always yields the same
draft. The AI tier is not deterministic, which is why deduplication in the
store works on canonical rule tuples and never on input text.

Example:
    >>> parser = RuleParser(extractor=None)
    >>> result = parser.parse("ignore everyone from acme.com")
    >>> result.rule.type, result.rule.pattern, result.strategy
    (<RuleType.DOMAIN: 'DOMAIN'>, 'acme.com', 'heuristic')
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from inbox_rules.audit import AuditLog
from inbox_rules.errors import ErrorCode, ParseError, ValidationError
from inbox_rules.llm_client import TextToRule
from inbox_rules.models import AuditAction, RuleAction, RuleDraft, RuleType
from inbox_rules.normalizer import normalize_exception, normalize_notes, normalize_pattern
from inbox_rules.redact import mask_email
from inbox_rules.schema import validate_record

logger = logging.getLogger(__name__)

STRATEGY_HEURISTIC = "heuristic"
STRATEGY_AI = "ai"

BARE_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+$")
AT_DOMAIN = re.compile(r"^@[^\s@]+$")
HOSTNAME = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$", re.IGNORECASE)
EMAIL_TOKEN = re.compile(r"^[^\s@]+@(?:[a-z0-9-]+\.)+[a-z]{2,63}$", re.IGNORECASE)
EXCEPTION_CLAUSE = re.compile(r"\b(unless|except|excluding|but not)\b", re.IGNORECASE)

# Dotted words that are file names or tools rather than hosts ("invoice.pdf", "node.js")
FILE_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "csv", "txt", "rtf", "md",
    "js", "ts", "py", "rb", "java", "json", "xml", "html", "htm",
    "png", "jpg", "jpeg", "gif", "svg", "zip", "tar", "gz", "exe",
})

# Punctuation that commonly wraps an address inside a sentence
TOKEN_WRAPPERS = "\"'`()[]<>{},;:!?."

BARE_CONFIDENCE = 0.95
SENTENCE_CONFIDENCE = 0.8
PARTIAL_CONFIDENCE = 0.6
TOPIC_GUESS_CONFIDENCE = 0.4


@dataclass
class HeuristicResult:
    """
    Outcome of the heuristic tier.

    When ``needs_ai`` is True, ``rule`` is only a best-effort guess (or None)
    and must not be persisted.
    """
    rule: Optional[RuleDraft]
    needs_ai: bool


@dataclass
class ParseResult:
    """A parsed rule plus the strategy that produced it."""
    rule: RuleDraft
    strategy: str

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule.to_dict(), "strategy": self.strategy}


def _draft(rule_type: RuleType, pattern: str, action: RuleAction, confidence: float) -> RuleDraft:
    return RuleDraft(
        type=rule_type,
        pattern=normalize_pattern(rule_type, pattern),
        action=action,
        confidence=confidence,
    )


def _looks_like_host(token: str) -> bool:
    return bool(HOSTNAME.match(token)) and token.rsplit(".", 1)[-1].lower() not in FILE_EXTENSIONS


def _classify_token(token: str) -> Optional[Tuple[RuleType, str]]:
    """Return (type, canonical pattern) if the token is address-shaped."""
    if AT_DOMAIN.match(token) and HOSTNAME.match(token[1:]):
        return RuleType.DOMAIN, normalize_pattern(RuleType.DOMAIN, token)
    if EMAIL_TOKEN.match(token):
        return RuleType.EMAIL, normalize_pattern(RuleType.EMAIL, token)
    if _looks_like_host(token):
        return RuleType.DOMAIN, normalize_pattern(RuleType.DOMAIN, token)
    return None


def _address_candidates(text: str) -> List[Tuple[RuleType, str]]:
    candidates: List[Tuple[RuleType, str]] = []
    for raw_token in text.split():
        token = raw_token.strip(TOKEN_WRAPPERS)
        if not token:
            continue
        candidate = _classify_token(token)
        if candidate and candidate not in candidates:
            candidates.append(candidate)
    return candidates


def apply_heuristics(text: str, default_action: Union[RuleAction, str]) -> HeuristicResult:
    """
    Deterministic, offline rule extraction.

    Recognised shapes (``needs_ai=False``):
        - "@acme.com"                      -> DOMAIN acme.com
        - "Boss@Example.com"               -> EMAIL boss@example.com
        - "acme.com"                       -> DOMAIN acme.com
        - one address/domain in a sentence -> EMAIL/DOMAIN of that token,
          provided the sentence has no exception clause ("unless ...")

    Everything else returns ``needs_ai=True`` with a best-effort draft.

    Args:
        text: Free-text rule description
        default_action: Action to assign (heuristics never infer one)

    Returns:
        HeuristicResult
    """
    action = RuleAction(default_action)
    trimmed = (text or "").strip()

    if not trimmed:
        return HeuristicResult(rule=None, needs_ai=True)

    if AT_DOMAIN.match(trimmed):
        return HeuristicResult(_draft(RuleType.DOMAIN, trimmed, action, BARE_CONFIDENCE), needs_ai=False)

    if BARE_EMAIL.match(trimmed):
        return HeuristicResult(_draft(RuleType.EMAIL, trimmed, action, BARE_CONFIDENCE), needs_ai=False)

    if _looks_like_host(trimmed):
        return HeuristicResult(_draft(RuleType.DOMAIN, trimmed, action, BARE_CONFIDENCE), needs_ai=False)

    candidates = _address_candidates(trimmed)
    has_exception = bool(EXCEPTION_CLAUSE.search(trimmed))

    if len(candidates) == 1 and not has_exception:
        rule_type, pattern = candidates[0]
        return HeuristicResult(_draft(rule_type, pattern, action, SENTENCE_CONFIDENCE), needs_ai=False)

    if candidates:
        rule_type, pattern = candidates[0]
        return HeuristicResult(_draft(rule_type, pattern, action, PARTIAL_CONFIDENCE), needs_ai=True)

    condensed = " ".join(trimmed.split())
    return HeuristicResult(_draft(RuleType.TOPIC, condensed, action, TOPIC_GUESS_CONFIDENCE), needs_ai=True)


def _strip_code_fence(content: str) -> str:
    """Remove a markdown code fence the model may wrap around its JSON."""
    cleaned = content.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        if len(lines) > 2 and lines[-1].strip().startswith("```"):
            cleaned = "\n".join(lines[1:-1])
        else:
            cleaned = "\n".join(lines[1:]).rstrip("`")
    return cleaned.strip()


def validate_ai_output(raw: Union[str, Dict[str, Any]]) -> RuleDraft:
    """
    Validate raw extractor output against the rule schema.

    Args:
        raw: JSON text (optionally code-fenced) or an already-decoded object

    Returns:
        A draft with canonical pattern and exception

    Raises:
        ParseError: If the output is not a JSON object or violates the schema
    """
    if isinstance(raw, str):
        try:
            data = json.loads(_strip_code_fence(raw))
        except json.JSONDecodeError as e:
            raise ParseError(
                f"AI output is not valid JSON: {e}",
                code=ErrorCode.PARSE_SCHEMA_INVALID
            ) from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ParseError(
            f"AI output must be a JSON object, got {type(data).__name__}",
            code=ErrorCode.PARSE_SCHEMA_INVALID
        )

    try:
        record = validate_record(data)
    except ValidationError as e:
        raise ParseError(
            f"AI output failed schema validation: {e.message}",
            code=ErrorCode.PARSE_SCHEMA_INVALID
        ) from e

    draft = record.to_draft()
    draft.pattern = normalize_pattern(draft.type, draft.pattern)
    draft.unless_contains = normalize_exception(draft.unless_contains)
    draft.notes = normalize_notes(draft.notes)
    if not draft.pattern:
        raise ParseError("AI output pattern is empty after normalization", code=ErrorCode.PARSE_SCHEMA_INVALID)
    return draft


class RuleParser:
    """
    Free text -> RuleDraft, heuristics first, AI second.

    Args:
        extractor: TextToRule capability for the AI tier (None disables it)
        audit: Optional audit log; each escalation records PARSER_FALLBACK
        default_action: Action used when the caller does not pass one
    """

    def __init__(
        self,
        extractor: Optional[TextToRule] = None,
        audit: Optional[AuditLog] = None,
        default_action: RuleAction = RuleAction.VIP
    ):
        self._extractor = extractor
        self._audit = audit
        self.default_action = RuleAction(default_action)

    def _record_fallback(self, text: str, outcome: str, actor: Optional[str]) -> None:
        if self._audit is None:
            return
        input_digest = hashlib.sha256(text.encode('utf-8')).hexdigest()[:16]
        self._audit.record(
            AuditAction.PARSER_FALLBACK,
            entity="rule_parser",
            entity_id=input_digest,
            # Masked first: a truncated local part is no longer email-shaped
            details={'input': mask_email(text)[:200], 'outcome': outcome},
            actor=actor,
        )

    def parse(
        self,
        text: str,
        default_action: Optional[Union[RuleAction, str]] = None,
        actor: Optional[str] = None
    ) -> ParseResult:
        """
        Parse free text into a draft rule.

        Raises:
            ParseError: Empty input, AI needed but unavailable, AI failure,
                or AI output that fails the schema
        """
        action = RuleAction(default_action) if default_action else self.default_action

        if not text or not text.strip():
            raise ParseError("Provide text to parse.", code=ErrorCode.PARSE_EMPTY_INPUT)

        heuristics = apply_heuristics(text, action)
        if not heuristics.needs_ai:
            logger.debug(f"Heuristic parse produced {heuristics.rule.type.value} rule")
            return ParseResult(rule=heuristics.rule, strategy=STRATEGY_HEURISTIC)

        return self.parse_rule_text(text, default_action=action, actor=actor)

    def parse_rule_text(
        self,
        text: str,
        default_action: Optional[Union[RuleAction, str]] = None,
        actor: Optional[str] = None
    ) -> ParseResult:
        """
        AI tier: ask the extractor and validate what comes back.

        Called by parse() once heuristics are inconclusive.
        """
        action = RuleAction(default_action) if default_action else self.default_action
        cleaned = text.strip()

        if self._extractor is None:
            self._record_fallback(cleaned, "unavailable", actor)
            raise ParseError(
                "Unable to parse rule: text needs AI-assisted parsing and no extractor is configured.",
                code=ErrorCode.PARSE_AI_UNAVAILABLE
            )

        logger.info("Heuristics inconclusive, escalating rule text to AI extractor")

        try:
            raw = self._extractor.extract_rule(cleaned, action)
        except Exception as e:
            self._record_fallback(cleaned, "error", actor)
            raise ParseError(f"Unable to parse rule: {e}", code=ErrorCode.PARSE_AI_FAILED) from e

        try:
            draft = validate_ai_output(raw)
        except ParseError:
            self._record_fallback(cleaned, "rejected", actor)
            raise

        self._record_fallback(cleaned, "accepted", actor)
        return ParseResult(rule=draft, strategy=STRATEGY_AI)


def parse_rule_text(
    text: str,
    extractor: Optional[TextToRule] = None,
    default_action: Union[RuleAction, str] = RuleAction.VIP
) -> ParseResult:
    """Convenience wrapper: parse ``text`` with a throwaway RuleParser."""
    return RuleParser(extractor=extractor, default_action=RuleAction(default_action)).parse(text)
