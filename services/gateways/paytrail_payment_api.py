"""
Paytrail Payment API Handler Implementation
JSON payment request signed with HMAC-SHA256 headers, redirect to the
returned payment page.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from functools import cached_property
from typing import Any, Dict, List

from core.config import parse_mappings
from core.exceptions import CallbackValidationError, GatewayRequestError
from models import CallbackOutcome, CheckoutStatus
from schemas import CallbackRequest, FineData, GatewayResponse, RedirectInstruction
from .base import NAME_PLACEHOLDER, TRANSACTION_FEE_DESCRIPTION, PaymentHandlerBase, PaymentOrder
from .signatures import hashes_match, paytrail_hmac

logger = logging.getLogger(__name__)

PAYTRAIL_API_URL = "https://services.paytrail.com"
DEFAULT_PLATFORM_NAME = "Finna"

CHECKOUT_OUTCOMES = {
    CheckoutStatus.OK.value: CallbackOutcome.PAID,
    CheckoutStatus.FAIL.value: CallbackOutcome.CANCELED,
    CheckoutStatus.NEW.value: CallbackOutcome.PENDING,
    CheckoutStatus.PENDING.value: CallbackOutcome.PENDING,
    CheckoutStatus.DELAYED.value: CallbackOutcome.PENDING,
}


def checkout_outcome(status: str) -> CallbackOutcome:
    return CHECKOUT_OUTCOMES.get(status, CallbackOutcome.UNKNOWN)


class PaytrailPaymentAPIHandler(PaymentHandlerBase):
    """Paytrail Payment API (shop-in-shop when organization merchants are mapped)"""

    required_config = ("merchant_id", "secret")
    description_max_length = 1000
    product_code_max_length = 100
    language_map = {"fi": "FI", "sv": "SV", "en": "EN"}
    default_language = "EN"

    @property
    def name(self) -> str:
        return "PaytrailPaymentAPI"

    # ── helpers ──────────────────────────────────────────────
    @cached_property
    def organization_merchant_id_mappings(self) -> Dict[str, str]:
        return parse_mappings(self.config.organization_merchant_id_mappings)

    @cached_property
    def organization_fine_type_product_code_mappings(self) -> Dict[str, str]:
        return parse_mappings(self.config.organization_fine_type_product_code_mappings)

    def has_product_code_config(self) -> bool:
        return (
            super().has_product_code_config()
            or bool(self.organization_merchant_id_mappings)
            or bool(self.organization_fine_type_product_code_mappings)
        )

    def resolve_product_code(self, fine: FineData, fallback_to_fee_type: bool = True) -> str:
        # "organization/fee type" mapping overrides everything else
        code = self.organization_fine_type_product_code_mappings.get(f"{fine.organization}/{fine.fine}")
        if code is None:
            return super().resolve_product_code(fine, fallback_to_fee_type)
        return code[:self.product_code_max_length]

    def signed_headers(self, method: str, body: str) -> Dict[str, str]:
        headers = {
            "checkout-account": str(self.config.merchant_id),
            "checkout-algorithm": "sha256",
            "checkout-method": method,
            "checkout-nonce": uuid.uuid4().hex,
            "checkout-timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "platform-name": self.config.platform_name or DEFAULT_PLATFORM_NAME,
            "content-type": "application/json; charset=utf-8",
        }
        headers["signature"] = paytrail_hmac(headers, body, self.config.secret)
        return headers

    def build_items(self, order: PaymentOrder) -> List[Dict[str, Any]]:
        items = []
        for fine, fee_line in zip(order.fines, order.fee_lines):
            item: Dict[str, Any] = {
                "unitPrice": fine.balance,
                "units": 1,
                "vatPercentage": 0,
                "productCode": self.resolve_product_code(fine),
                "description": fee_line.description,
                "stamp": f"{order.transaction_id} {fine.fine_id or ''}".strip(),
            }
            if fine.fine_id:
                item["reference"] = fine.fine_id
            merchant = self.organization_merchant_id_mappings.get(fine.organization)
            if merchant:
                item["merchant"] = merchant
            items.append(item)
        if order.transaction_fee:
            items.append({
                "unitPrice": order.transaction_fee,
                "units": 1,
                "vatPercentage": 0,
                "productCode": self.config.transaction_fee_product_code or self.config.product_code or "",
                "description": TRANSACTION_FEE_DESCRIPTION,
            })
        return items

    def build_payment_request(self, order: PaymentOrder) -> Dict[str, Any]:
        return_urls = {"success": order.return_url, "cancel": order.return_url}
        callback_urls = {"success": order.notify_url, "cancel": order.notify_url}
        request: Dict[str, Any] = {
            "stamp": order.transaction_id,
            "reference": f"{order.transaction_id} - {order.patron_id}",
            "amount": order.total,
            "currency": order.currency,
            "language": order.language,
            "customer": {
                "email": order.email,
                "firstName": order.firstname or NAME_PLACEHOLDER,
                "lastName": order.lastname or NAME_PLACEHOLDER,
            },
            "redirectUrls": return_urls,
            "callbackUrls": callback_urls,
        }
        if self.has_product_code_config():
            request["items"] = self.build_items(order)
        return request

    # ── send_payment ────────────────────────────────────────
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        payment_request = self.build_payment_request(order)
        body = json.dumps(payment_request)
        base_url = (self.config.url or PAYTRAIL_API_URL).rstrip("/")

        response = self.send_request("POST", f"{base_url}/payments", body, self.signed_headers("POST", body))

        response_headers = {k.lower(): v for k, v in response.headers.items()}
        expected = paytrail_hmac(response_headers, response.text, self.config.secret)
        if not hashes_match(expected, response_headers.get("signature")):
            raise GatewayRequestError(
                "exception sending payment: response signature validation failed",
                {"request": payment_request, "response": response.text}
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        href = data.get("href") if isinstance(data, dict) else None
        if not href:
            raise GatewayRequestError(
                "exception sending payment: payment page missing from response",
                {"request": payment_request, "response": response.text}
            )

        logger.info(f"Paytrail payment {order.transaction_id} created, transaction {data.get('transactionId')}")
        return self.redirect_to_payment(href)

    # ── parse_callback ──────────────────────────────────────
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        params = dict(request.query)
        self.require_fields(
            params,
            ["checkout-reference", "checkout-stamp", "checkout-status", "signature"],
            allow_empty=False,
        )

        expected = paytrail_hmac(params, "", self.config.secret)
        if not hashes_match(expected, params["signature"]):
            raise CallbackValidationError("parameter signature validation failed", {"params": params})

        status = params["checkout-status"]
        return GatewayResponse(
            transaction_id=params["checkout-stamp"],
            status=status,
            outcome=checkout_outcome(status),
            reference=params["checkout-reference"],
            params=params,
        )
