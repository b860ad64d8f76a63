"""
Rule record wire schema.

This module defines the Pydantic schema for the rule record shape used for
submission, storage views, bulk import and AI extraction output:

    { type: "EMAIL"|"DOMAIN"|"TOPIC",
      pattern: string (non-empty),
      action: "VIP"|"SUPPRESS",
      unless_contains?: string|null,
      notes?: string|null,
      confidence?: number|null }     # 0.0-1.0 when present

Pydantic failures are converted into the engine's ValidationError so callers
only deal with one exception family.
"""
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from inbox_rules.errors import ErrorCode, ValidationError
from inbox_rules.models import RuleAction, RuleDraft, RuleType


class RuleRecord(BaseModel):
    """A single rule record in wire format."""
    model_config = ConfigDict(extra='ignore')

    type: RuleType = Field(..., description="EMAIL, DOMAIN or TOPIC")
    pattern: str = Field(..., min_length=1, description="Value to match")
    action: RuleAction = Field(..., description="VIP or SUPPRESS")
    unless_contains: Optional[str] = Field(default=None, description="Exception substring")
    notes: Optional[str] = Field(default=None, description="Free text notes")
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Parse certainty")

    @field_validator('type', 'action', mode='before')
    @classmethod
    def upper_enum_value(cls, v: Any) -> Any:
        """Accept enum values case-insensitively ("email", " Suppress ")."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator('pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Validate pattern is not blank."""
        if not v.strip():
            raise ValueError("pattern cannot be blank")
        return v

    @field_validator('unless_contains', 'notes')
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator('confidence', mode='before')
    @classmethod
    def reject_bool_confidence(cls, v: Any) -> Any:
        """Booleans are ints in Python; they are not a confidence."""
        if isinstance(v, bool):
            raise ValueError("confidence must be a number between 0 and 1")
        return v

    def to_draft(self) -> RuleDraft:
        return RuleDraft(
            type=self.type,
            pattern=self.pattern,
            action=self.action,
            unless_contains=self.unless_contains,
            notes=self.notes,
            confidence=self.confidence,
        )


def _format_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue.get('loc', ())) or "record"
        messages.append(f"{location}: {issue.get('msg')}")
    return messages


def validate_record(data: Any) -> RuleRecord:
    """
    Validate one raw record (dict, RuleDraft or RuleRecord).

    Raises:
        ValidationError: If the record does not match the wire schema
    """
    if isinstance(data, RuleRecord):
        return data
    if isinstance(data, RuleDraft):
        data = data.to_dict()
    if not isinstance(data, dict):
        raise ValidationError(
            f"Rule record must be an object, got {type(data).__name__}",
            code=ErrorCode.RULE_INVALID
        )
    try:
        return RuleRecord.model_validate(data)
    except PydanticValidationError as e:
        messages = _format_errors(e)
        raise ValidationError(
            f"Invalid rule record: {'; '.join(messages)}",
            code=ErrorCode.RULE_INVALID,
            issues=[{'index': 0, 'errors': messages}]
        ) from e


def validate_records(items: Sequence[Any]) -> List[RuleRecord]:
    """
    Validate a batch of raw records, all-or-nothing.

    Every record is checked so the error reports all bad indexes at once.

    Raises:
        ValidationError: If the batch is empty or any record is invalid
    """
    if not items:
        raise ValidationError("Provide at least one rule.", code=ErrorCode.IMPORT_EMPTY)

    records: List[RuleRecord] = []
    issues: List[Dict[str, Any]] = []
    for index, item in enumerate(items):
        try:
            records.append(validate_record(item))
        except ValidationError as e:
            errors = e.issues[0]['errors'] if e.issues else [e.message]
            issues.append({'index': index, 'errors': errors})

    if issues:
        raise ValidationError(
            f"Invalid rules payload: {len(issues)} of {len(items)} record(s) rejected",
            code=ErrorCode.RULE_INVALID,
            issues=issues
        )
    return records
