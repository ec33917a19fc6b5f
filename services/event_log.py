"""
Transaction Event Log
Appends human-readable audit events to a transaction's history.
"""
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import settings
from core.database import get_supabase
from schemas import Transaction

logger = logging.getLogger(__name__)


class EventLog(ABC):
    """Base event log; subclasses decide where events are written."""

    def add_event(self, transaction: Transaction, message: str, data: Optional[Dict[str, Any]] = None):
        event = {
            "transaction_id": transaction.transaction_id,
            "message": message,
            "data": json.dumps(data, default=str) if data else None,
            "created_at": datetime.utcnow().isoformat(),
        }
        try:
            self._write(event)
        except Exception as e:
            # Never fail the payment operation due to event logging issues
            logger.error(
                f"[EVENT LOG ERROR] Failed to log event '{message}' for transaction "
                f"{transaction.transaction_id}: {e}",
                exc_info=True
            )

    @abstractmethod
    def _write(self, event: Dict[str, Any]):
        ...


class SupabaseEventLog(EventLog):
    """Writes events to the transaction_event_log table"""

    TABLE = "transaction_event_log"

    def __init__(self, client=None):
        self._client = client

    def _write(self, event: Dict[str, Any]):
        supabase = self._client or get_supabase()
        if not supabase:
            # Fallback to application log if Supabase not available
            logger.warning(f"[EVENT] {event['transaction_id']}: {event['message']} {event['data'] or ''}")
            return
        supabase.table(self.TABLE).insert(event).execute()

    def get_events(self, transaction_id: str) -> List[Dict[str, Any]]:
        supabase = self._client or get_supabase()
        if not supabase:
            return []
        result = (
            supabase.table(self.TABLE)
            .select("*")
            .eq("transaction_id", transaction_id)
            .order("created_at")
            .execute()
        )
        return result.data or []


class InMemoryEventLog(EventLog):
    """Keeps events in process memory (development and tests)"""

    def __init__(self):
        self._events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _write(self, event: Dict[str, Any]):
        with self._lock:
            self._events.append(event)

    def get_events(self, transaction_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [e for e in self._events if e["transaction_id"] == transaction_id]

    def messages(self, transaction_id: str) -> List[str]:
        return [e["message"] for e in self.get_events(transaction_id)]


_memory_event_log: Optional[InMemoryEventLog] = None


def get_event_log() -> EventLog:
    """Returns the event log matching the configured transaction store."""
    global _memory_event_log
    if settings.TRANSACTION_STORE == "memory":
        if _memory_event_log is None:
            _memory_event_log = InMemoryEventLog()
        return _memory_event_log
    return SupabaseEventLog()
