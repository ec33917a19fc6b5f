"""
Online Payment Handler Abstraction Layer
Defines the transaction lifecycle shared by all payment gateways:

  start_payment: build a gateway request -> persist a pending transaction ->
                 return a redirect to the gateway
  process_payment_response: validate the callback -> check the transaction id ->
                 apply the gateway status to the stored transaction
"""

import hashlib
import html
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from functools import cached_property
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from core.config import GatewayConfig, parse_mappings, settings
from core.exceptions import CallbackValidationError, ConfigurationError, GatewayRequestError
from models import CallbackOutcome, PaymentResult, RedirectMethod, TransactionStatus
from schemas import (
    CallbackRequest,
    FeeLine,
    FineData,
    GatewayResponse,
    Patron,
    RedirectInstruction,
    Transaction,
    UserInfo,
)
from services.error_monitoring import log_payment_error
from services.event_log import EventLog
from services.gateways.signatures import hashes_match
from services.transaction_store import TransactionStore
from services.translator import Translator, language_code

logger = logging.getLogger(__name__)

TRANSACTION_FEE_DESCRIPTION = "Palvelumaksu / Serviceavgift / Transaction fee"
NAME_PLACEHOLDER = "ei tietoa"

PAYMENT_FORM = """<!DOCTYPE html>
<html lang="{lang}">
<head>
    <meta http-equiv="X-UA-Compatible" content="IE=edge"/>
    <meta name="viewport" content="width=device-width,initial-scale=1.0"/>
    <meta http-equiv="Content-Type" content="text/html; charset=UTF-8">
    <title>{title}</title>
    <script>
        document.addEventListener('DOMContentLoaded', function() {{
            document.getElementById('payment-form').submit();
        }});
    </script>
</head>
<body>
    <noscript>
        {js_required}
    </noscript>
    <form id="payment-form" action="{url}" method="POST">
        {fields}
    </form>
</body>
</html>
"""


@dataclass
class PaymentOrder:
    """Everything a gateway needs to build its payment request"""
    transaction_id: str
    patron_id: str
    user: UserInfo
    firstname: str
    lastname: str
    email: str
    amount: int
    transaction_fee: int
    currency: str
    fines: List[FineData]
    return_url: str
    notify_url: str
    language: str
    fee_lines: List[FeeLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.amount + self.transaction_fee


def format_amount(cents: int) -> str:
    """Smallest currency unit to a decimal string, e.g. 1050 -> '10.50'"""
    return str((Decimal(int(cents)) / 100).quantize(Decimal("0.01")))


class PaymentHandlerBase(ABC):
    """Abstract base class for online payment handlers (CPU, Paytrail, Turku, ...)"""

    # Configuration keys that must be present (GatewayConfig field names)
    required_config: Tuple[str, ...] = ("merchant_id", "secret")
    # Gateway maximum lengths
    description_max_length: int = 255
    product_code_max_length: int = 100
    # User language -> gateway language code
    language_map: Dict[str, str] = {}
    default_language: str = "EN"

    def __init__(
        self,
        config: GatewayConfig,
        store: TransactionStore,
        event_log: EventLog,
        translator: Optional[Translator] = None,
        locale: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        missing = [GatewayConfig.key_name(k) for k in self.required_config if not getattr(config, k)]
        if missing:
            log_payment_error(f"missing parameter {', '.join(missing)}", {"handler": self.name})
            raise ConfigurationError(f"Missing parameter: {', '.join(missing)}", {"handler": self.name})

        self.config = config
        self.store = store
        self.event_log = event_log
        self.locale = locale or settings.DEFAULT_LOCALE
        self.translator = translator or Translator(self.locale)
        self.session = session or requests.Session()
        self.timeout = settings.HTTP_TIMEOUT

    @property
    @abstractmethod
    def name(self) -> str:
        """Handler name as used in the online payment configuration"""
        ...

    # ── gateway specific ────────────────────────────────────
    @abstractmethod
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        """
        Build and submit the gateway payment request.

        Raises GatewayRequestError (or GatewayStatusError) when the gateway does
        not accept the payment, ConfigurationError when a per-request setting
        is missing.
        """
        ...

    @abstractmethod
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        """
        Extract and verify the callback parameters.

        Raises CallbackValidationError for missing parameters or an invalid
        signature.
        """
        ...

    # ── transaction lifecycle ───────────────────────────────
    def start_payment(
        self,
        return_base_url: str,
        notify_base_url: str,
        user: UserInfo,
        patron: Patron,
        source_id: str,
        amount: int,
        transaction_fee: int,
        fines: List[FineData],
        currency: str,
        payment_param: str,
    ) -> Optional[RedirectInstruction]:
        """
        Start a transaction.

        Returns the redirect to the payment service, or None when the payment
        could not be started. Nothing is persisted for a failed start.
        """
        patron_id = patron.cat_username
        transaction_id = self.generate_transaction_id(patron_id)

        firstname, lastname = self.extract_user_names(user)
        order = PaymentOrder(
            transaction_id=transaction_id,
            patron_id=patron_id,
            user=user,
            firstname=firstname,
            lastname=lastname,
            email=(user.email or "").strip(),
            amount=amount,
            transaction_fee=transaction_fee,
            currency=currency,
            fines=list(fines),
            return_url=self.add_query_params(return_base_url, {payment_param: transaction_id}),
            notify_url=self.add_query_params(notify_base_url, {payment_param: transaction_id}),
            language=self.get_language(),
        )
        order.fee_lines = [self.create_fee_line(order, fine) for fine in order.fines]

        try:
            redirect = self.send_payment(order)
        except (ConfigurationError, GatewayRequestError) as e:
            self.log_payment_error(
                e.message,
                {"user": user, "patron": patron, "fines": fines, **e.details}
            )
            return None

        transaction = self.store.create_transaction(
            Transaction(
                transaction_id=transaction_id,
                source_id=source_id,
                user_id=user.id,
                cat_username=patron_id,
                amount=amount,
                transaction_fee=transaction_fee,
                currency=currency,
            ),
            order.fee_lines,
        )
        self.add_event(transaction, "Transaction created")
        return redirect

    def process_payment_response(
        self, transaction: Transaction, request: CallbackRequest
    ) -> Tuple[PaymentResult, bool]:
        """
        Process the response from the payment service.

        Returns the result code and whether this call marked the transaction
        as paid.
        """
        try:
            response = self.parse_callback(request)
        except CallbackValidationError as e:
            self.log_payment_error(e.message, e.details)
            self.add_event(transaction, "Callback validation failed", {"error": e.message})
            return PaymentResult.FAILURE, False

        # Make sure the transaction ids match
        if not hashes_match(transaction.transaction_id, response.transaction_id):
            self.log_payment_error(
                "transaction id mismatch",
                {"expected": transaction.transaction_id, "received": response.transaction_id}
            )
            self.add_event(
                transaction, "Transaction id mismatch", {"received": response.transaction_id}
            )
            return PaymentResult.FAILURE, False

        outcome = response.outcome
        if outcome == CallbackOutcome.PAID:
            marked = self.store.mark_paid(transaction.transaction_id, response.paid_at)
            if marked:
                self.add_event(transaction, "Transaction marked as paid")
            else:
                self.add_event(transaction, self._already_message(transaction))
            return PaymentResult.SUCCESS, marked
        if outcome == CallbackOutcome.CANCELED:
            if self.store.mark_canceled(transaction.transaction_id):
                self.add_event(transaction, "Transaction marked as canceled")
            else:
                self.add_event(transaction, self._already_message(transaction))
            return PaymentResult.CANCEL, False
        if outcome == CallbackOutcome.PENDING:
            self.add_event(transaction, f"Transaction pending (received status {response.status})")
            return PaymentResult.PENDING, False

        self.log_payment_error(f"unknown status {response.status}", {"params": response.params})
        self.add_event(transaction, "Received unknown status", {"status": response.status})
        return PaymentResult.FAILURE, False

    def _already_message(self, transaction: Transaction) -> str:
        current = self.store.get_transaction(transaction.transaction_id)
        if current is None:
            return "Transaction missing from store"
        if current.status == TransactionStatus.PAID:
            return "Transaction already marked as paid"
        return f"Transaction already {current.status.value}"

    # ── shared helpers ──────────────────────────────────────
    @staticmethod
    def generate_transaction_id(patron_id: str) -> str:
        """Internal transaction identifier from the patron id and current time"""
        return hashlib.md5(f"{patron_id}_{time.time()}".encode("utf-8")).hexdigest()

    @staticmethod
    def add_query_params(url: str, params: Dict[str, Any]) -> str:
        separator = "&" if "?" in url else "?"
        return url + separator + urlencode(params)

    @staticmethod
    def extract_user_names(user: UserInfo) -> Tuple[str, str]:
        """Return (firstname, lastname), splitting a combined name when needed"""
        lastname = (user.lastname or "").strip()
        if user.firstname and user.firstname.strip():
            return user.firstname.strip(), lastname

        # We don't have both names separately, try to extract first name from last name
        if lastname.find(",") > 0:
            # Lastname, Firstname
            lastname, firstname = lastname.split(",", 1)
        else:
            # First Middle Last
            match = re.match(r"^(.*) (.*?)$", lastname)
            if match:
                firstname, lastname = match.group(1), match.group(2)
            else:
                firstname = ""
        return firstname.strip(), lastname.strip()

    def get_language(self) -> str:
        return self.language_map.get(language_code(self.locale), self.default_language)

    @cached_property
    def product_code_mappings(self) -> Dict[str, str]:
        return parse_mappings(self.config.product_code_mappings)

    @cached_property
    def organization_product_code_mappings(self) -> Dict[str, str]:
        return parse_mappings(self.config.organization_product_code_mappings)

    def has_product_code_config(self) -> bool:
        return bool(
            self.config.product_code
            or self.config.transaction_fee_product_code
            or self.product_code_mappings
            or self.organization_product_code_mappings
        )

    def resolve_product_code(self, fine: FineData, fallback_to_fee_type: bool = True) -> str:
        """
        Product code of a fine.

        Fee type mapping, then the default product code, then (optionally) the
        fee type itself. An organization mapping replaces the result with the
        organization code followed by the fee type mapping.
        """
        fee_type = fine.fine
        if fee_type in self.product_code_mappings:
            code = self.product_code_mappings[fee_type]
        elif self.config.product_code:
            code = self.config.product_code
        else:
            code = fee_type if fallback_to_fee_type else ""

        org_code = self.organization_product_code_mappings.get(fine.organization)
        if org_code is not None:
            code = org_code + self.product_code_mappings.get(fee_type, "")
        return code[:self.product_code_max_length]

    def translate_fee_type(self, fee_type: str) -> str:
        if not fee_type:
            return ""
        for key in (f"fine_status_{fee_type}", f"status_{fee_type}"):
            translated = self.translator.translate(key)
            if translated != key:
                return translated
        return fee_type

    def fee_description(self, fine: FineData, max_length: Optional[int] = None) -> str:
        """Translated fee type with the title in parentheses, within max_length characters"""
        max_length = max_length or self.description_max_length
        description = self.translate_fee_type(fine.fine)
        if fine.title:
            room = max_length - 4 - len(description)
            if room > 0:
                description += f" ({fine.title[:room]})"
        return description[:max_length]

    def create_fee_line(self, order: PaymentOrder, fine: FineData) -> FeeLine:
        return FeeLine(
            transaction_id=order.transaction_id,
            type=fine.fine,
            title=fine.title,
            description=self.fee_description(fine),
            amount=fine.balance,
            currency=order.currency,
            organization=fine.organization,
            fine_id=fine.fine_id,
        )

    def send_request(
        self,
        method: str,
        url: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[Tuple[str, str]] = None,
    ) -> requests.Response:
        """Send a request to the gateway; transport errors and non-2xx raise GatewayRequestError"""
        try:
            response = self.session.request(
                method,
                url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                auth=auth,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            logger.error(f"Error posting request: {e}, url: {url}")
            raise GatewayRequestError(f"exception sending payment: {e}", {"url": url}) from e

        logger.info(f"Online payment request: url: {url}, response status: {response.status_code}")
        logger.debug(f"Online payment request body: {body}, response: {response.text}")

        if not 200 <= response.status_code < 300:
            raise GatewayRequestError(
                f"error sending payment: invalid status code {response.status_code}",
                {"url": url, "response": response.text}
            )
        return response

    def redirect_to_payment(self, url: str) -> RedirectInstruction:
        return RedirectInstruction(url=url, method=RedirectMethod.GET)

    def redirect_to_payment_form(self, url: str, form_fields: Dict[str, str]) -> RedirectInstruction:
        """Auto-submitting form that POSTs the fields to the payment service"""
        fields = "".join(
            f'<input type="hidden" name="{html.escape(str(k))}" value="{html.escape(str(v))}">'
            for k, v in form_fields.items()
        )
        title = self.translator.translate("online_payment_go_to_pay").replace("%%amount%%", "").strip()
        page = PAYMENT_FORM.format(
            lang=html.escape(language_code(self.locale)),
            title=html.escape(title),
            js_required=html.escape(self.translator.translate("Please enable JavaScript.")),
            url=html.escape(url),
            fields=fields,
        )
        return RedirectInstruction(
            url=url, method=RedirectMethod.POST, form_fields=form_fields, html=page
        )

    def require_fields(self, params: Dict[str, Any], names: List[str], allow_empty: bool = True) -> None:
        for name in names:
            value = params.get(name)
            if value is None or (not allow_empty and value == ""):
                raise CallbackValidationError(
                    f"missing parameter {name} in payment response", {"params": params}
                )

    def add_event(self, transaction: Transaction, message: str, data: Optional[Dict[str, Any]] = None):
        self.event_log.add_event(transaction, message, {**(data or {}), "source": type(self).__name__})

    def log_payment_error(self, msg: str, data: Optional[Dict[str, Any]] = None):
        log_payment_error(msg, data, logger)
