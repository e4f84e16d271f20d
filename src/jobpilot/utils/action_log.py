"""
Action Log - Append-Only Audit Trail.

Every pipeline transition writes exactly one ActionLogEntry. Appends are
best-effort from the caller's point of view: a failing store never aborts the
business transition being described. Entries that could not be written are
emitted to the structured logger with their full payload and kept in a pending
buffer that is flushed ahead of the next append.
"""

import threading
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Union

from jobpilot.config.entity_schemas import ActionLogEntry
from jobpilot.config.statuses import ActionType, LogStatus
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

# Oldest entries are dropped (after being logged) once the buffer is full
MAX_PENDING_ENTRIES = 1000


class ActionLog:
    """Action Log sink backed by the store's "action_logs" kind.

    Args:
        store: Store implementation (InMemoryStore or DynamoDBStore).
        max_pending: Size of the retry buffer for failed appends.
    """

    def __init__(self, store: Any, max_pending: int = MAX_PENDING_ENTRIES) -> None:
        self.store = store
        self._pending: Deque[ActionLogEntry] = deque(maxlen=max_pending)
        self._lock = threading.Lock()

    # ------------------------------
    # Public interface
    # ------------------------------
    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: Union[ActionType, str],
        status: LogStatus = LogStatus.SUCCESS,
        test_mode: bool = False,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> ActionLogEntry:
        """Build an entry and append it. Never raises."""
        entry = ActionLogEntry(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value if isinstance(action, Enum) else action,
            status=status,
            test_mode=test_mode,
            metadata=metadata or {},
            error_message=error_message,
        )
        self.append(entry)
        return entry

    def append(self, entry: ActionLogEntry) -> None:
        """Append an entry, buffering it if the store rejects the write."""
        with self._lock:
            backlog = list(self._pending)
            self._pending.clear()

        for pending in backlog + [entry]:
            try:
                self.store.put("action_logs", pending)
            except Exception as e:
                logger.error(
                    "Failed to append action log entry",
                    extra={
                        "extra_fields": {
                            "action_log_entry": pending.model_dump(mode="json"),
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                with self._lock:
                    self._pending.append(pending)

    def query(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[Union[ActionType, str]] = None,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ActionLogEntry]:
        """Return matching entries ordered by creation time."""
        filters: Dict[str, Any] = {}
        if entity_type:
            filters["entity_type"] = entity_type
        if entity_id:
            filters["entity_id"] = entity_id
        if action:
            filters["action"] = action.value if isinstance(action, Enum) else action
        if user_id:
            filters["user_id"] = user_id

        entries = self.store.query("action_logs", **filters)
        if since is not None:
            entries = [entry for entry in entries if entry.created_at >= since]
        return sorted(entries, key=lambda entry: entry.created_at)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
