"""
Database layer for the rule engine.

Handles SQLite operations for rules, audit events, threads and tasks.
A single connection is shared behind a lock so worker threads (the
suppression sweep) can use it safely. Every sqlite3 failure surfaces as a
StoreError; nothing here retries.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from inbox_rules.errors import StoreError
from inbox_rules.models import (
    AuditAction,
    AuditEvent,
    Rule,
    RuleAction,
    RuleDraft,
    RuleType,
    TaskRecord,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS rules (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN ('EMAIL', 'DOMAIN', 'TOPIC')),
    pattern TEXT NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('VIP', 'SUPPRESS')),
    unless_contains TEXT,
    notes TEXT,
    confidence REAL,
    created_at TEXT NOT NULL,
    seq INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_events (
    id TEXT PRIMARY KEY,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    entity TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    details TEXT NOT NULL,
    created_at TEXT NOT NULL,
    seq INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS threads (
    id TEXT PRIMARY KEY,
    subject TEXT,
    participants TEXT
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    thread_id TEXT REFERENCES threads(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_rules_seq ON rules(seq);
CREATE INDEX IF NOT EXISTS idx_audit_seq ON audit_events(seq);
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class TriageDatabase:
    """SQLite operations for the rule engine."""

    def __init__(self, path: Union[str, Path] = ":memory:"):
        """
        Open (and create if needed) the database.

        Args:
            path: SQLite file path, or ":memory:" for a private in-memory db
        """
        self.path = str(path)
        self._lock = threading.RLock()
        # Monotonic counter for stable newest-first ordering within one timestamp
        self._seq = 0

        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
            self._seq = self._load_seq()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Database initialization failed for {self.path}: {e}") from e

        logger.debug(f"Opened database at {self.path}")

    def _load_seq(self) -> int:
        row = self._conn.execute(
            "SELECT MAX(m) FROM (SELECT MAX(seq) AS m FROM rules UNION ALL SELECT MAX(seq) FROM audit_events)"
        ).fetchone()
        return row[0] or 0

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block in one transaction: commit on success, rollback on error.

        sqlite3 errors are wrapped as StoreError; other exceptions propagate
        unchanged after the rollback.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN")
            except sqlite3.Error as e:
                raise StoreError(f"Could not start transaction: {e}") from e
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StoreError(f"Database operation failed: {e}") from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StoreError(f"Commit failed: {e}") from e

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Query failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Rules

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> Rule:
        return Rule(
            id=row['id'],
            type=RuleType(row['type']),
            pattern=row['pattern'],
            action=RuleAction(row['action']),
            unless_contains=row['unless_contains'],
            notes=row['notes'],
            confidence=row['confidence'],
            created_at=datetime.fromisoformat(row['created_at']),
        )

    def _insert_rule(self, conn: sqlite3.Connection, draft: RuleDraft) -> Rule:
        rule = Rule(
            id=_new_id(),
            type=draft.type,
            pattern=draft.pattern,
            action=draft.action,
            unless_contains=draft.unless_contains,
            notes=draft.notes,
            confidence=draft.confidence,
            created_at=_utcnow(),
        )
        conn.execute(
            """
            INSERT INTO rules (id, type, pattern, action, unless_contains, notes, confidence, created_at, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                rule.id, rule.type.value, rule.pattern, rule.action.value,
                rule.unless_contains, rule.notes, rule.confidence,
                rule.created_at.isoformat(), self._next_seq(),
            ),
        )
        return rule

    def insert_rule(self, draft: RuleDraft) -> Rule:
        """Persist one canonical draft and return the stored rule."""
        with self.transaction() as conn:
            return self._insert_rule(conn, draft)

    def insert_rules(self, drafts: Sequence[RuleDraft]) -> List[Rule]:
        """Persist drafts in a single transaction: all rows or none."""
        with self.transaction() as conn:
            return [self._insert_rule(conn, draft) for draft in drafts]

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        rows = self._query("SELECT * FROM rules WHERE id = ?", (rule_id,))
        return self._row_to_rule(rows[0]) if rows else None

    def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule; returns False when no row matched."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
            return cursor.rowcount > 0

    def list_rules(self, action: Optional[RuleAction] = None) -> List[Rule]:
        """Rules newest-created first, optionally filtered by action."""
        if action is None:
            rows = self._query("SELECT * FROM rules ORDER BY seq DESC")
        else:
            rows = self._query(
                "SELECT * FROM rules WHERE action = ? ORDER BY seq DESC",
                (RuleAction(action).value,)
            )
        return [self._row_to_rule(row) for row in rows]

    # Audit events

    def insert_audit_event(
        self,
        actor: str,
        action: AuditAction,
        entity: str,
        entity_id: str,
        details: Dict[str, Any]
    ) -> AuditEvent:
        event = AuditEvent(
            id=_new_id(),
            actor=actor,
            action=AuditAction(action),
            entity=entity,
            entity_id=entity_id,
            details=details,
            created_at=_utcnow(),
        )
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO audit_events (id, actor, action, entity, entity_id, details, created_at, seq)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, event.actor, event.action.value, event.entity, event.entity_id,
                    json.dumps(event.details, default=str), event.created_at.isoformat(),
                    self._next_seq(),
                ),
            )
        return event

    def list_audit_events(self, limit: int = 100) -> List[AuditEvent]:
        rows = self._query("SELECT * FROM audit_events ORDER BY seq DESC LIMIT ?", (limit,))
        return [
            AuditEvent(
                id=row['id'],
                actor=row['actor'],
                action=AuditAction(row['action']),
                entity=row['entity'],
                entity_id=row['entity_id'],
                details=json.loads(row['details']),
                created_at=datetime.fromisoformat(row['created_at']),
            )
            for row in rows
        ]

    # Threads and tasks

    def insert_thread(
        self,
        participants: Optional[str],
        subject: Optional[str] = None,
        thread_id: Optional[str] = None
    ) -> str:
        """Store a thread with its raw participant encoding."""
        thread_id = thread_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO threads (id, subject, participants) VALUES (?, ?, ?)",
                (thread_id, subject, participants),
            )
        return thread_id

    def insert_task(self, title: str, thread_id: Optional[str] = None, task_id: Optional[str] = None) -> str:
        task_id = task_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO tasks (id, title, thread_id) VALUES (?, ?, ?)",
                (task_id, title, thread_id),
            )
        return task_id

    def list_tasks_with_threads(self) -> List[TaskRecord]:
        rows = self._query(
            """
            SELECT tasks.id AS id, tasks.title AS title, threads.id AS thread_id,
                   threads.participants AS participants
            FROM tasks LEFT JOIN threads ON threads.id = tasks.thread_id
            ORDER BY tasks.rowid
            """
        )
        return [
            TaskRecord(
                id=row['id'],
                title=row['title'],
                thread_id=row['thread_id'],
                participants=row['participants'],
            )
            for row in rows
        ]

    def delete_task(self, task_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cursor.rowcount > 0

    def count_tasks(self) -> int:
        return self._query("SELECT COUNT(*) FROM tasks")[0][0]
