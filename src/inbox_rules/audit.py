"""
Audit Log Module

Append-only, best-effort record of rule lifecycle events.

Every string in ``details`` is redacted (email local parts masked) before it
is stored. Writes never raise to the caller: a failed write is logged as an
AuditWriteError and dropped. In async mode the write is handed to a single
background worker, so the primary mutation never waits on it.

Accepted consistency gap: because the audit write is not part of the
mutation's transaction, the log may under-report (a lost write) but never
records a mutation that did not commit.

Usage:
    >>> audit = AuditLog(database)
    >>> audit.record(AuditAction.RULE_DELETED, "rule", rule.id,
    ...              details={"pattern": rule.pattern})
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Set

from inbox_rules.database import TriageDatabase
from inbox_rules.errors import AuditWriteError, ErrorCode, log_error_with_context
from inbox_rules.models import SYSTEM_ACTOR, AuditAction, AuditEvent
from inbox_rules.redact import redact_value

logger = logging.getLogger(__name__)


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Redact every string value in ``details``, recursing into containers."""
    if not details:
        return {}
    return redact_value(dict(details))


class AuditLog:
    """
    Best-effort audit writer.

    Args:
        database: Database that stores the audit rows
        async_writes: Dispatch writes to a background worker instead of
            writing inline
    """

    def __init__(self, database: TriageDatabase, async_writes: bool = False):
        self._database = database
        self._async_writes = async_writes
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _write(
        self,
        actor: str,
        action: AuditAction,
        entity: str,
        entity_id: str,
        details: Dict[str, Any]
    ) -> Optional[AuditEvent]:
        try:
            return self._database.insert_audit_event(actor, action, entity, entity_id, details)
        except Exception as e:
            error = AuditWriteError(
                f"Audit write failed: {e}",
                context={'action': action.value, 'entity': entity, 'entity_id': entity_id}
            )
            log_error_with_context(
                error, ErrorCode.AUDIT_WRITE_FAILED, "Recording audit event",
                context=error.context, level=logging.WARNING
            )
            return None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='audit')
        return self._executor

    def record(
        self,
        action: AuditAction,
        entity: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> None:
        """
        Append one audit event.

        Never raises. In async mode this returns before the row is written;
        call flush() to wait for pending writes.
        """
        try:
            action = AuditAction(action)
            safe_details = sanitize_details(details)
            args = (actor or SYSTEM_ACTOR, action, entity, str(entity_id), safe_details)

            if not self._async_writes:
                self._write(*args)
                return

            with self._lock:
                future = self._get_executor().submit(self._write, *args)
                self._pending.add(future)
            future.add_done_callback(self._discard)
        except Exception as e:
            log_error_with_context(
                e, ErrorCode.AUDIT_WRITE_FAILED, "Dispatching audit event",
                context={'entity': entity, 'entity_id': entity_id}, level=logging.WARNING
            )

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for pending async writes."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Flush and stop the background worker."""
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def list_events(self, limit: int = 100) -> List[AuditEvent]:
        """Most recent events first."""
        return self._database.list_audit_events(limit)
