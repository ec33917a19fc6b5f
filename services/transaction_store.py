"""
Transaction Store
Persists online payment transactions with their fee lines and performs the
status transitions. Transitions are conditional updates (compare-and-swap on
the status column) so duplicate gateway callbacks handled by separate
processes mark a transaction paid at most once.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from core.config import settings
from core.database import get_supabase
from core.exceptions import PersistenceError
from models import TransactionStatus
from schemas import Transaction, FeeLine

logger = logging.getLogger(__name__)


class TransactionStore(ABC):
    """Contract every transaction store must implement"""

    @abstractmethod
    def create_transaction(self, transaction: Transaction, fee_lines: List[FeeLine]) -> Transaction:
        """Persist a pending transaction and its fee lines (all or nothing)."""
        ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    def get_fee_lines(self, transaction_id: str) -> List[FeeLine]:
        ...

    @abstractmethod
    def mark_paid(self, transaction_id: str, paid_at: Optional[datetime] = None) -> bool:
        """
        Move a pending transaction to paid.

        Returns True only when this call performed the transition.
        """
        ...

    @abstractmethod
    def mark_canceled(self, transaction_id: str) -> bool:
        """Move a pending transaction to canceled; paid transactions stay paid."""
        ...


class SupabaseTransactionStore(TransactionStore):
    """Stores transactions in the `transactions` and `transaction_fees` tables"""

    TRANSACTIONS = "transactions"
    FEES = "transaction_fees"

    def __init__(self, client=None):
        self._client = client

    def _db(self):
        db = self._client or get_supabase()
        if not db:
            raise PersistenceError("Database unavailable")
        return db

    def create_transaction(self, transaction: Transaction, fee_lines: List[FeeLine]) -> Transaction:
        supabase = self._db()
        record = transaction.model_dump(mode="json", exclude={"id"})

        try:
            result = supabase.table(self.TRANSACTIONS).insert(record).execute()
        except Exception as e:
            raise PersistenceError(f"Failed to save transaction: {e}", {"transaction": record}) from e
        if not result.data:
            raise PersistenceError("Failed to save transaction", {"transaction": record})

        saved = Transaction(**result.data[0])

        if fee_lines:
            rows = [fee.model_dump(mode="json") for fee in fee_lines]
            try:
                fees = supabase.table(self.FEES).insert(rows).execute()
            except Exception as e:
                fees = None
                logger.error(f"Failed to save fees for transaction {transaction.transaction_id}: {e}")
            if not fees or not fees.data:
                # Remove the orphaned transaction so a failed start leaves nothing behind
                try:
                    supabase.table(self.TRANSACTIONS).delete().eq(
                        "transaction_id", transaction.transaction_id
                    ).execute()
                except Exception as e:
                    logger.error(
                        f"Failed to remove orphaned transaction {transaction.transaction_id}: {e}",
                        exc_info=True
                    )
                raise PersistenceError(
                    "Failed to save transaction fees",
                    {"transaction": record, "fees": rows}
                )

        logger.info(
            f"Created transaction: {saved.transaction_id}, source={saved.source_id}, "
            f"amount={saved.amount}, fee={saved.transaction_fee} {saved.currency}"
        )
        return saved

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        supabase = self._db()
        try:
            result = (
                supabase.table(self.TRANSACTIONS)
                .select("*")
                .eq("transaction_id", transaction_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to fetch transaction {transaction_id}: {e}") from e
        if not result.data:
            return None
        return Transaction(**result.data[0])

    def get_fee_lines(self, transaction_id: str) -> List[FeeLine]:
        supabase = self._db()
        try:
            result = (
                supabase.table(self.FEES)
                .select("*")
                .eq("transaction_id", transaction_id)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to fetch fees for transaction {transaction_id}: {e}") from e
        return [FeeLine(**row) for row in (result.data or [])]

    def _transition(self, transaction_id: str, values: Dict) -> bool:
        try:
            result = (
                self._db().table(self.TRANSACTIONS)
                .update(values)
                .eq("transaction_id", transaction_id)
                .eq("status", TransactionStatus.PENDING.value)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(
                f"Failed to update transaction {transaction_id}: {e}", {"values": values}
            ) from e
        return bool(result.data)

    def mark_paid(self, transaction_id: str, paid_at: Optional[datetime] = None) -> bool:
        return self._transition(transaction_id, {
            "status": TransactionStatus.PAID.value,
            "paid_at": (paid_at or datetime.utcnow()).isoformat(),
        })

    def mark_canceled(self, transaction_id: str) -> bool:
        return self._transition(transaction_id, {"status": TransactionStatus.CANCELED.value})


class InMemoryTransactionStore(TransactionStore):
    """Process-local store for development and tests"""

    def __init__(self):
        self._transactions: Dict[str, Transaction] = {}
        self._fees: Dict[str, List[FeeLine]] = {}
        self._lock = threading.Lock()
        self._next_id = 1

    def create_transaction(self, transaction: Transaction, fee_lines: List[FeeLine]) -> Transaction:
        with self._lock:
            if transaction.transaction_id in self._transactions:
                raise PersistenceError(f"Transaction {transaction.transaction_id} already exists")
            saved = transaction.model_copy(update={"id": self._next_id})
            self._next_id += 1
            self._transactions[saved.transaction_id] = saved
            self._fees[saved.transaction_id] = list(fee_lines)
        return saved.model_copy()

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            t = self._transactions.get(transaction_id)
            return t.model_copy() if t else None

    def get_fee_lines(self, transaction_id: str) -> List[FeeLine]:
        with self._lock:
            return list(self._fees.get(transaction_id, []))

    def _transition(self, transaction_id: str, **values) -> bool:
        with self._lock:
            t = self._transactions.get(transaction_id)
            if t is None or t.status != TransactionStatus.PENDING:
                return False
            self._transactions[transaction_id] = t.model_copy(update=values)
            return True

    def mark_paid(self, transaction_id: str, paid_at: Optional[datetime] = None) -> bool:
        return self._transition(
            transaction_id, status=TransactionStatus.PAID, paid_at=paid_at or datetime.utcnow()
        )

    def mark_canceled(self, transaction_id: str) -> bool:
        return self._transition(transaction_id, status=TransactionStatus.CANCELED)


_memory_store: Optional[InMemoryTransactionStore] = None


def get_transaction_store() -> TransactionStore:
    """
    Returns the configured transaction store.

    Controlled by TRANSACTION_STORE env var:
      - "supabase" (default)
      - "memory"
    """
    global _memory_store
    if settings.TRANSACTION_STORE == "memory":
        if _memory_store is None:
            _memory_store = InMemoryTransactionStore()
        return _memory_store
    return SupabaseTransactionStore()
