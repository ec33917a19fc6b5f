"""
Payment Handler Factory
Reads the source's online payment configuration from settings and returns the
matching handler.
"""

import logging
from typing import Dict, Optional, Type

import requests
from pydantic import ValidationError

from core.config import GatewayConfig, settings
from core.exceptions import ConfigurationError
from services.event_log import EventLog, get_event_log
from services.transaction_store import TransactionStore, get_transaction_store
from .base import PaymentHandlerBase
from .cpu import CPUHandler
from .paytrail import PaytrailHandler
from .paytrail_payment_api import PaytrailPaymentAPIHandler
from .turku_payment import TurkuPaymentHandler
from .turku_payment_api import TurkuPaymentAPIHandler

logger = logging.getLogger(__name__)

HANDLERS: Dict[str, Type[PaymentHandlerBase]] = {
    "CPU": CPUHandler,
    "Paytrail": PaytrailHandler,
    "PaytrailPaymentAPI": PaytrailPaymentAPIHandler,
    "TurkuPayment": TurkuPaymentHandler,
    "TurkuPaymentAPI": TurkuPaymentAPIHandler,
}


def get_gateway_config(source: str) -> GatewayConfig:
    raw = settings.ONLINE_PAYMENT_SOURCES.get(source)
    if not raw:
        raise ConfigurationError(f"Online payment not enabled for {source}", {"source": source})
    try:
        return GatewayConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid online payment configuration for {source}: {e}") from e


def is_enabled(source: str) -> bool:
    """Whether online payment is configured with a known handler for the source"""
    raw = settings.ONLINE_PAYMENT_SOURCES.get(source) or {}
    return raw.get("handler") in HANDLERS


def get_payment_handler(
    source: str,
    store: Optional[TransactionStore] = None,
    event_log: Optional[EventLog] = None,
    locale: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> PaymentHandlerBase:
    """
    Returns the payment handler configured for a source.

    Controlled by ONLINE_PAYMENT_SOURCES[source]["handler"]:
      - "CPU"
      - "Paytrail"
      - "PaytrailPaymentAPI"
      - "TurkuPayment"
      - "TurkuPaymentAPI"
    """
    config = get_gateway_config(source)
    handler_class = HANDLERS.get(config.handler)
    if handler_class is None:
        raise ConfigurationError(
            f"Unknown online payment handler {config.handler!r} for {source}", {"source": source}
        )

    handler = handler_class(
        config,
        store or get_transaction_store(),
        event_log or get_event_log(),
        locale=locale,
        session=session,
    )
    logger.info(f"🔌 Online payment handler initialized: {handler.name} ({source})")
    return handler
