"""
Suppression Sweep Module

Batch job that applies the current SUPPRESS rules to every existing task and
deletes the tasks they match.

Each task is handled on its own (subject extraction, evaluation, delete) in
a worker pool. A failure on one task skips that task; it is not retried and
does not stop the run. Only failing to load the rules or the task list
aborts the sweep. Outcomes are counted per task and summed, so iteration
order never changes the result, and re-running after a partial sweep only
deletes what still matches.

Usage:
    >>> sweep = SuppressionSweep(database, max_workers=8)
    >>> result = sweep.run()
    >>> result.deleted
    2
"""
import contextvars
import logging
import uuid
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from inbox_rules.database import TriageDatabase
from inbox_rules.errors import ErrorCode, log_error_with_context
from inbox_rules.logging_context import get_logging_context, with_correlation_id
from inbox_rules.matcher import evaluate
from inbox_rules.models import Rule, RuleAction, TaskRecord
from inbox_rules.participants import build_subject
from inbox_rules.redact import mask_email

logger = logging.getLogger(__name__)


class TaskOutcome(Enum):
    DELETED = "deleted"
    KEPT = "kept"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SweepResult:
    """Counts for one sweep run."""
    scanned: int = 0
    deleted: int = 0
    kept: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self):
        return {
            'scanned': self.scanned,
            'deleted': self.deleted,
            'kept': self.kept,
            'skipped': self.skipped,
            'failed': self.failed,
        }


class SuppressionSweep:
    """
    Delete tasks that match an active SUPPRESS rule.

    Args:
        database: Source of rules and tasks, and target of deletes
        max_workers: Worker threads used to process tasks
    """

    def __init__(self, database: TriageDatabase, max_workers: int = 8):
        self._database = database
        self._max_workers = max(1, max_workers)

    def _process_task(self, task: TaskRecord, rules: List[Rule]) -> TaskOutcome:
        if not task.has_thread:
            return TaskOutcome.SKIPPED

        try:
            subject = build_subject(task.participants, task.title)
            decision = evaluate(subject, rules)
        except Exception as e:
            log_error_with_context(
                e, ErrorCode.SWEEP_TASK_FAILED, "Evaluating task",
                context={'task_id': task.id}, level=logging.WARNING
            )
            return TaskOutcome.SKIPPED

        if not decision.suppressed:
            return TaskOutcome.KEPT

        try:
            if not self._database.delete_task(task.id):
                # Already gone (concurrent sweep or user action)
                return TaskOutcome.SKIPPED
        except Exception as e:
            log_error_with_context(
                e, ErrorCode.SWEEP_TASK_FAILED, "Deleting suppressed task",
                context={'task_id': task.id}, level=logging.WARNING
            )
            return TaskOutcome.FAILED

        logger.info(
            f"Deleted task {task.id}: {mask_email(task.title[:60])} "
            f"(rule {decision.fired_rule.id})"
        )
        return TaskOutcome.DELETED

    def run(self, rules: Optional[List[Rule]] = None) -> SweepResult:
        """
        Run one sweep.

        Args:
            rules: Rules to apply; defaults to the stored SUPPRESS rules

        Returns:
            SweepResult with per-outcome counts

        Raises:
            StoreError: If rules or tasks cannot be loaded
        """
        correlation_id = get_logging_context().get('correlation_id') or f"sweep-{uuid.uuid4().hex[:8]}"

        with with_correlation_id(correlation_id):
            if rules is None:
                rules = self._database.list_rules(RuleAction.SUPPRESS)
            suppress_rules = [rule for rule in rules if rule.action == RuleAction.SUPPRESS]

            if not suppress_rules:
                logger.info("No suppression rules found. Nothing to clean.")
                return SweepResult()

            tasks = self._database.list_tasks_with_threads()
            logger.info(f"Sweeping {len(tasks)} task(s) against {len(suppress_rules)} suppression rule(s)")

            with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix='sweep') as pool:
                # Each task runs in a copy of this context so log lines keep the correlation id
                futures = [
                    pool.submit(contextvars.copy_context().run, self._process_task, task, suppress_rules)
                    for task in tasks
                ]
                outcomes = [future.result() for future in futures]

            counts = Counter(outcomes)
            result = SweepResult(
                scanned=len(tasks),
                deleted=counts[TaskOutcome.DELETED],
                kept=counts[TaskOutcome.KEPT],
                skipped=counts[TaskOutcome.SKIPPED],
                failed=counts[TaskOutcome.FAILED],
            )

            logger.info(
                f"Cleaned up {result.deleted} suppressed task{'' if result.deleted == 1 else 's'} "
                f"(skipped={result.skipped}, failed={result.failed})"
            )
            return result
