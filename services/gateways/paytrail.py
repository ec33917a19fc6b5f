"""
Paytrail E2 Payment Handler Implementation
The payment is started by POSTing a signed form to the E2 interface.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.exceptions import CallbackValidationError
from models import CallbackOutcome, PaytrailE2Status, PaytrailItemType
from schemas import CallbackRequest, GatewayResponse, RedirectInstruction
from .base import (
    NAME_PLACEHOLDER,
    TRANSACTION_FEE_DESCRIPTION,
    PaymentHandlerBase,
    PaymentOrder,
    format_amount,
)
from .signatures import hashes_match, paytrail_e2_authcode, paytrail_e2_return_authcode

logger = logging.getLogger(__name__)

PAYTRAIL_E2_URL = "https://payment.paytrail.com/e2"
PARAMS_OUT = "ORDER_NUMBER,PAYMENT_ID,TIMESTAMP,STATUS"


class PaytrailE2Form:
    """Collects E2 form fields in order and signs them"""

    def __init__(self, merchant_id: str, secret: str):
        self.merchant_id = merchant_id
        self.secret = secret
        self.fields: Dict[str, str] = {"MERCHANT_ID": merchant_id}
        self.items: List[Dict[str, str]] = []

    def set(self, name: str, value) -> None:
        self.fields[name] = str(value)

    def add_product(self, title: str, code: str, quantity: int, unit_price: int, vat: int, item_type: int):
        self.items.append({
            "ITEM_TITLE": title,
            "ITEM_ID": code,
            "ITEM_QUANTITY": str(quantity),
            "ITEM_UNIT_PRICE": format_amount(unit_price),
            "ITEM_VAT_PERCENT": str(vat),
            "ITEM_DISCOUNT_PERCENT": "0",
            "ITEM_TYPE": str(int(item_type)),
        })

    def create_form_data(self) -> Dict[str, str]:
        data: Dict[str, str] = {}
        for key in ("MERCHANT_ID", "URL_SUCCESS", "URL_CANCEL", "ORDER_NUMBER"):
            data[key] = self.fields.get(key, "")
        data["PARAMS_IN"] = ""
        data["PARAMS_OUT"] = PARAMS_OUT
        for i, item in enumerate(self.items):
            for key, value in item.items():
                data[f"{key}[{i}]"] = value
        for key, value in self.fields.items():
            if key not in data:
                data[key] = value

        data["PARAMS_IN"] = ",".join(data.keys())
        data["AUTHCODE"] = paytrail_e2_authcode(data.values(), self.secret)
        return data


class PaytrailHandler(PaymentHandlerBase):
    """Paytrail E2 interface: signed auto-submitting form"""

    required_config = ("merchant_id", "secret")
    description_max_length = 255
    product_code_max_length = 16
    language_map = {"fi": "fi_FI", "sv": "sv_SE", "en": "en_US"}
    default_language = "en_US"

    @property
    def name(self) -> str:
        return "Paytrail"

    # ── send_payment ────────────────────────────────────────
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        form = PaytrailE2Form(self.config.merchant_id, self.config.secret)
        form.set("URL_SUCCESS", order.return_url)
        form.set("URL_CANCEL", order.return_url)
        form.set("URL_NOTIFY", order.notify_url)
        form.set("ORDER_NUMBER", order.transaction_id)
        form.set("CURRENCY", order.currency)
        form.set("LOCALE", order.language)

        if self.config.payment_description:
            form.set("MSG_UI_MERCHANT_PANEL", f"{self.config.payment_description} - {order.patron_id}")
        else:
            form.set("MSG_UI_MERCHANT_PANEL", order.patron_id)

        form.set("PAYER_PERSON_FIRSTNAME", order.firstname or NAME_PLACEHOLDER)
        form.set("PAYER_PERSON_LASTNAME", order.lastname or NAME_PLACEHOLDER)
        if order.email:
            form.set("PAYER_PERSON_EMAIL", order.email)

        if not self.has_product_code_config():
            form.set("AMOUNT", format_amount(order.total))
        else:
            for fine, fee_line in zip(order.fines, order.fee_lines):
                form.add_product(
                    fee_line.description,
                    self.resolve_product_code(fine),
                    1,
                    fine.balance,
                    0,
                    PaytrailItemType.NORMAL,
                )
            if order.transaction_fee:
                form.add_product(
                    TRANSACTION_FEE_DESCRIPTION,
                    self.config.transaction_fee_product_code or self.config.product_code or "",
                    1,
                    order.transaction_fee,
                    0,
                    PaytrailItemType.HANDLING,
                )

        url = self.config.e2url or PAYTRAIL_E2_URL
        return self.redirect_to_payment_form(url, form.create_form_data())

    # ── parse_callback ──────────────────────────────────────
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        params = request.params()
        self.require_fields(
            params, ["ORDER_NUMBER", "PAYMENT_ID", "TIMESTAMP", "STATUS", "RETURN_AUTHCODE"]
        )

        expected = paytrail_e2_return_authcode(
            params["ORDER_NUMBER"],
            params["PAYMENT_ID"],
            params["TIMESTAMP"],
            params["STATUS"],
            self.config.secret,
        )
        if not hashes_match(expected, params["RETURN_AUTHCODE"]):
            raise CallbackValidationError(
                "error processing response: invalid checksum", {"params": params}
            )

        status = params["STATUS"]
        outcome = {
            PaytrailE2Status.PAID.value: CallbackOutcome.PAID,
            PaytrailE2Status.CANCELLED.value: CallbackOutcome.CANCELED,
        }.get(status, CallbackOutcome.UNKNOWN)

        return GatewayResponse(
            transaction_id=params["ORDER_NUMBER"],
            status=status,
            outcome=outcome,
            reference=params["PAYMENT_ID"],
            paid_at=self._parse_timestamp(params["TIMESTAMP"]),
            params=params,
        )

    @staticmethod
    def _parse_timestamp(value: str) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Invalid Paytrail timestamp: {value}")
            return None
