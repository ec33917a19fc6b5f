"""
Turku Payment Handler Implementation
Turku's E2 derivative: a JSON order request to the city's payment service,
which answers with the payment page address.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.exceptions import CallbackValidationError, GatewayRequestError
from models import CallbackOutcome, PaytrailItemType
from schemas import CallbackRequest, GatewayResponse, RedirectInstruction
from .base import TRANSACTION_FEE_DESCRIPTION, PaymentHandlerBase, PaymentOrder, format_amount
from .signatures import hashes_match, turku_e2_authcode

logger = logging.getLogger(__name__)

TURKU_PRODUCT_CODE_MAX_LENGTH = 16


class TurkuPaymentHandler(PaymentHandlerBase):
    """Turku Payment (E2 based)"""

    required_config = ("merchant_id", "secret", "url", "sap_code", "o_id", "application_name")
    description_max_length = 255
    product_code_max_length = TURKU_PRODUCT_CODE_MAX_LENGTH
    language_map = {"fi": "fi_FI", "sv": "sv_SE", "en": "en_US"}
    default_language = "en_US"

    @property
    def name(self) -> str:
        return "TurkuPayment"

    def build_products(self, order: PaymentOrder) -> List[Dict[str, Any]]:
        products = []
        for fine in order.fines:
            products.append({
                "title": self.translate_fee_type(fine.fine),
                "code": fine.fine[:TURKU_PRODUCT_CODE_MAX_LENGTH],
                "amount": 1,
                "price": format_amount(fine.balance),
                "vat": 0,
                "type": int(PaytrailItemType.NORMAL),
            })
        if order.transaction_fee:
            products.append({
                "title": TRANSACTION_FEE_DESCRIPTION,
                "code": self.config.transaction_fee_product_code or self.config.product_code or "",
                "amount": 1,
                "price": format_amount(order.transaction_fee),
                "vat": 0,
                "type": int(PaytrailItemType.HANDLING),
            })
        return products

    def build_order(self, order: PaymentOrder) -> Dict[str, Any]:
        if self.config.payment_description:
            description = f"{self.config.payment_description} - {order.patron_id}"
        else:
            description = order.patron_id
        return {
            "orderNumber": order.transaction_id,
            "currency": order.currency,
            "locale": order.language,
            "urlSet": {
                "success": order.return_url,
                "failure": order.return_url,
                "notification": order.notify_url,
            },
            "oid": self.config.o_id,
            "applicationName": self.config.application_name,
            "sapCode": self.config.sap_code,
            "merchantDescription": description,
            "products": self.build_products(order),
        }

    # ── send_payment ────────────────────────────────────────
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        payload = self.build_order(order)
        response = self.send_request(
            "POST",
            self.config.url,
            json.dumps(payload),
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            auth=(self.config.merchant_id, self.config.secret),
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise GatewayRequestError(
                "error sending payment request: payment page missing from response",
                {"order": payload, "response": response.text}
            )
        return self.redirect_to_payment(url)

    # ── parse_callback ──────────────────────────────────────
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        params = request.params()
        self.require_fields(params, ["ORDER_NUMBER", "TIMESTAMP", "RETURN_AUTHCODE"])

        paid = params.get("PAID")
        if paid:
            # Success request
            expected = turku_e2_authcode(
                [params["ORDER_NUMBER"], params["TIMESTAMP"], paid, params.get("METHOD", "")],
                self.config.secret,
            )
        else:
            # Cancel request
            expected = turku_e2_authcode([params["ORDER_NUMBER"], params["TIMESTAMP"]], self.config.secret)
        if not hashes_match(expected, params["RETURN_AUTHCODE"]):
            raise CallbackValidationError(
                f"error processing {'success' if paid else 'cancel'} response: invalid checksum",
                {"params": params}
            )

        return GatewayResponse(
            transaction_id=params["ORDER_NUMBER"],
            status="PAID" if paid else "CANCELLED",
            outcome=CallbackOutcome.PAID if paid else CallbackOutcome.CANCELED,
            reference=paid or None,
            paid_at=self._parse_timestamp(params["TIMESTAMP"]) if paid else None,
            params=params,
        )

    @staticmethod
    def _parse_timestamp(value: str) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
        except (TypeError, ValueError, OverflowError):
            logger.warning(f"Invalid Turku payment timestamp: {value}")
            return None
