"""
CSV rule import analysis.

Reads a spreadsheet export of VIP/suppression lists and turns it into a
preview of rule drafts that can then be bulk-imported. Nothing is persisted
here.

Column roles are detected from the header row:
    - rule columns: values become rules; header words hint the rule type
      (email/sender, domain/host, topic/keyword/subject/phrase/pattern) and
      may hint the action (e.g. "Blocked senders")
    - exception columns (unless/exception/skip/if not) -> unless_contains
    - notes columns (note/comment/description/context) -> notes
    - action columns (action/mode) -> per-row action keyword

If no header looks like a rule column, or the first row already holds an
address or domain, the first row is treated as data and every column
becomes a rule column.
"""

import csv
import io
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from inbox_rules.errors import ParseError
from inbox_rules.models import RuleAction, RuleDraft, RuleType
from inbox_rules.normalizer import normalize_exception, normalize_notes, normalize_pattern
from inbox_rules.rule_parser import STRATEGY_HEURISTIC, RuleParser, apply_heuristics
from inbox_rules.rule_store import dedup_key

logger = logging.getLogger(__name__)

STRATEGY_COLUMN = "column"

ACTION_KEYWORDS = [
    ("suppress", RuleAction.SUPPRESS),
    ("block", RuleAction.SUPPRESS),
    ("exclude", RuleAction.SUPPRESS),
    ("ignore", RuleAction.SUPPRESS),
    ("spam", RuleAction.SUPPRESS),
    ("vip", RuleAction.VIP),
    ("allow", RuleAction.VIP),
    ("include", RuleAction.VIP),
    ("track", RuleAction.VIP),
]

EMAIL_HEADER = re.compile(r"(email|sender)")
DOMAIN_HEADER = re.compile(r"(domain|host)")
TOPIC_HEADER = re.compile(r"(topic|keyword|subject|phrase|pattern)")
EXCEPTION_HEADER = re.compile(r"(unless|exception|skip|if not)")
NOTES_HEADER = re.compile(r"(note|comment|description|context)")
ACTION_HEADER = re.compile(r"(action|mode)")

ROLE_RULE = "rule"
ROLE_EXCEPTION = "exception"
ROLE_NOTES = "notes"
ROLE_ACTION = "action"


@dataclass
class ColumnDescriptor:
    index: int
    header: str
    role: str
    type_hint: Optional[RuleType] = None
    action_hint: Optional[RuleAction] = None


@dataclass
class PreviewEntry:
    """A draft rule plus where it came from."""
    rule: RuleDraft
    strategy: str
    row: int
    column: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        data = self.rule.to_dict()
        data.update({
            'id': self.id,
            'strategy': self.strategy,
            'source': {'row': self.row, 'column': self.column},
        })
        return data


@dataclass
class CsvAnalysis:
    preview: List[PreviewEntry] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0

    @property
    def summary(self) -> Dict[str, int]:
        return {
            'total_rows': self.total_rows,
            'total_rules': len(self.preview),
            'vip_count': sum(1 for entry in self.preview if entry.rule.action == RuleAction.VIP),
            'suppress_count': sum(1 for entry in self.preview if entry.rule.action == RuleAction.SUPPRESS),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'preview': [entry.to_dict() for entry in self.preview],
            'summary': self.summary,
            'errors': self.errors,
        }


def detect_action(text: Optional[str]) -> Optional[RuleAction]:
    """First action keyword found in ``text`` (case-insensitive)."""
    if not text:
        return None
    lowered = text.lower()
    for keyword, action in ACTION_KEYWORDS:
        if keyword in lowered:
            return action
    return None


def detect_type(header: str) -> Optional[RuleType]:
    lowered = header.lower()
    if EMAIL_HEADER.search(lowered):
        return RuleType.EMAIL
    if DOMAIN_HEADER.search(lowered):
        return RuleType.DOMAIN
    if TOPIC_HEADER.search(lowered):
        return RuleType.TOPIC
    return None


def describe_column(index: int, header: str) -> ColumnDescriptor:
    lowered = header.lower()
    if EXCEPTION_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ROLE_EXCEPTION)
    if NOTES_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ROLE_NOTES)
    if ACTION_HEADER.search(lowered):
        return ColumnDescriptor(index, header, ROLE_ACTION)
    return ColumnDescriptor(index, header, ROLE_RULE, detect_type(header), detect_action(header))


def split_csv(text: str) -> List[List[str]]:
    """Rows of trimmed cells; rows with no content are dropped."""
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    rows = []
    for row in reader:
        cells = [cell.strip() for cell in row]
        if any(cells):
            rows.append(cells)
    return rows


def _cell(row: List[str], index: int) -> str:
    return row[index].strip() if index < len(row) else ""


def _joined(row: List[str], columns: List[ColumnDescriptor]) -> Optional[str]:
    values = [_cell(row, column.index) for column in columns]
    values = [value for value in values if value]
    return "; ".join(values) if values else None


def analyze_csv(
    text: str,
    parser: RuleParser,
    default_action: Union[RuleAction, str] = RuleAction.VIP
) -> CsvAnalysis:
    """
    Build a rule preview from CSV text.

    Each rule cell goes through heuristics first. When they are
    inconclusive, a column type hint is applied directly; only cells with no
    hint reach the parser's AI tier. Cells that cannot be parsed are listed
    in ``errors`` and do not stop the analysis.

    Args:
        text: CSV document
        parser: RuleParser used for cells that need AI parsing
        default_action: Action when neither header nor row states one

    Returns:
        CsvAnalysis with preview entries, summary and errors
    """
    default_action = RuleAction(default_action)
    rows = split_csv(text)
    if not rows:
        return CsvAnalysis()

    columns = [describe_column(index, header) for index, header in enumerate(rows[0])]
    has_rule_column = any(column.role == ROLE_RULE for column in columns)
    # An address in the first row means there is no header row at all
    first_row_is_data = any(cell and not apply_heuristics(cell, default_action).needs_ai for cell in rows[0])

    if has_rule_column and not first_row_is_data:
        data_rows = rows[1:]
        first_row_number = 2
    else:
        data_rows = rows
        first_row_number = 1
        width = max(len(row) for row in rows)
        columns = [ColumnDescriptor(index, f"Column {index + 1}", ROLE_RULE) for index in range(width)]

    rule_columns = [column for column in columns if column.role == ROLE_RULE]
    exception_columns = [column for column in columns if column.role == ROLE_EXCEPTION]
    notes_columns = [column for column in columns if column.role == ROLE_NOTES]
    action_columns = [column for column in columns if column.role == ROLE_ACTION]

    analysis = CsvAnalysis(total_rows=len(data_rows))
    seen = set()

    for offset, row in enumerate(data_rows):
        row_number = first_row_number + offset
        exception = _joined(row, exception_columns)
        notes = _joined(row, notes_columns)
        row_action = next(
            (action for action in (detect_action(_cell(row, c.index)) for c in action_columns) if action),
            None
        )

        for column in rule_columns:
            value = _cell(row, column.index)
            if not value:
                continue

            action = column.action_hint or row_action or default_action
            heuristics = apply_heuristics(value, action)

            if not heuristics.needs_ai:
                draft, strategy = heuristics.rule, STRATEGY_HEURISTIC
            elif column.type_hint:
                draft = RuleDraft(
                    type=column.type_hint,
                    pattern=normalize_pattern(column.type_hint, value),
                    action=action,
                )
                strategy = STRATEGY_COLUMN
            else:
                try:
                    result = parser.parse(value, default_action=action)
                except ParseError as e:
                    analysis.errors.append({'row': row_number, 'column': column.header, 'message': e.message})
                    continue
                draft, strategy = result.rule, result.strategy

            if column.type_hint and draft.type != column.type_hint:
                draft = RuleDraft(
                    type=column.type_hint,
                    pattern=normalize_pattern(column.type_hint, draft.pattern),
                    action=draft.action,
                    unless_contains=draft.unless_contains,
                    notes=draft.notes,
                    confidence=draft.confidence,
                )

            if not draft.pattern:
                analysis.errors.append({'row': row_number, 'column': column.header, 'message': "Empty pattern"})
                continue

            draft = RuleDraft(
                type=draft.type,
                pattern=draft.pattern,
                action=action,
                unless_contains=draft.unless_contains or normalize_exception(exception),
                notes=draft.notes or normalize_notes(notes),
                confidence=draft.confidence,
            )

            key = dedup_key(draft)
            if key in seen:
                continue
            seen.add(key)

            analysis.preview.append(PreviewEntry(rule=draft, strategy=strategy, row=row_number, column=column.header))

    logger.info(
        f"Analyzed CSV: {analysis.total_rows} row(s), {len(analysis.preview)} rule(s), "
        f"{len(analysis.errors)} error(s)"
    )
    return analysis
