"""
Online Payment Service: source-agnostic payment operations.
Looks up the handler for a source (or a stored transaction) and runs the
transaction lifecycle through it.
"""

import logging
from typing import Optional, Tuple

import requests

from core.config import settings
from core.exceptions import ConfigurationError
from models import PaymentResult
from schemas import (
    CallbackRequest,
    PaymentResponseResult,
    RedirectInstruction,
    StartPaymentRequest,
    Transaction,
)
from services.event_log import EventLog
from services.gateways import get_payment_handler, is_enabled
from services.transaction_store import TransactionStore

logger = logging.getLogger(__name__)


class TransactionNotFound(Exception):
    """Callback refers to a transaction id that is missing or unknown."""


class OnlinePaymentService:
    """Runs start / return / notify through the configured payment handlers."""

    def __init__(
        self,
        store: TransactionStore,
        event_log: EventLog,
        session: Optional[requests.Session] = None,
    ):
        self.store = store
        self.event_log = event_log
        self.session = session

    def _handler(self, source_id: str, locale: Optional[str] = None):
        return get_payment_handler(
            source_id, self.store, self.event_log, locale=locale, session=self.session
        )

    # ── Start ───────────────────────────────────────────────
    def start(self, source_id: str, data: StartPaymentRequest) -> Optional[RedirectInstruction]:
        if not is_enabled(source_id):
            raise ConfigurationError(f"Online payment not enabled for {source_id}", {"source": source_id})

        handler = self._handler(source_id, data.locale)
        logger.info(
            f"Starting online payment: source={source_id}, patron={data.patron.cat_username}, "
            f"amount={data.amount}, fee={data.transaction_fee} {data.currency}"
        )
        return handler.start_payment(
            data.return_url,
            data.notify_url,
            data.user,
            data.patron,
            source_id,
            data.amount,
            data.transaction_fee,
            data.fines,
            data.currency,
            settings.PAYMENT_ID_PARAM,
        )

    # ── Return / Notify ─────────────────────────────────────
    def find_transaction(self, request: CallbackRequest) -> Transaction:
        transaction_id = request.params().get(settings.PAYMENT_ID_PARAM)
        if not transaction_id:
            raise TransactionNotFound("Missing parameter")
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return transaction

    def process_response(self, request: CallbackRequest) -> Tuple[Transaction, PaymentResult, bool]:
        transaction = self.find_transaction(request)
        handler = self._handler(transaction.source_id)
        result, marked = handler.process_payment_response(transaction, request)
        logger.info(
            f"Online payment response for {transaction.transaction_id}: result={result.name}, marked={marked}"
        )
        return transaction, result, marked

    def response_result(self, request: CallbackRequest) -> PaymentResponseResult:
        transaction, result, marked = self.process_response(request)
        current = self.store.get_transaction(transaction.transaction_id) or transaction
        return PaymentResponseResult(
            transaction_id=transaction.transaction_id,
            result=result.name.lower(),
            marked=marked,
            status=current.status,
        )
