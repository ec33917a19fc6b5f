"""
Turku Payment API Handler Implementation
Paytrail Payment API variant hosted by the City of Turku: SAP details on the
order and items, SHA-256 Authorization instead of HMAC signatures.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from core.exceptions import CallbackValidationError, ConfigurationError, GatewayRequestError
from schemas import CallbackRequest, GatewayResponse, RedirectInstruction
from .base import TRANSACTION_FEE_DESCRIPTION, PaymentHandlerBase, PaymentOrder
from .paytrail_payment_api import checkout_outcome
from .signatures import hashes_match, turku_hash

logger = logging.getLogger(__name__)

GET_CALLBACK_FIELDS = [
    "checkout-amount",
    "checkout-reference",
    "checkout-stamp",
    "checkout-status",
    "checkout-provider",
    "checkout-transaction-id",
    "X-TURKU-SP",
    "X-TURKU-TS",
    "Authorization",
]
POST_CALLBACK_HEADERS = ["X-Turku-Sp", "X-Turku-Ts", "Authorization"]


def turku_timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class TurkuPaymentAPIHandler(PaymentHandlerBase):
    """Turku Payment API"""

    required_config = ("merchant_id", "secret", "o_id", "url", "platform_name")
    description_max_length = 1000
    product_code_max_length = 100
    language_map = {"fi": "FI", "sv": "SV", "en": "EN"}
    default_language = "FI"

    @property
    def name(self) -> str:
        return "TurkuPaymentAPI"

    # ── request building ────────────────────────────────────
    def sap_organization_details(self) -> Dict[str, str]:
        details = {
            "sapSalesOrganization": self.config.sap_sales_organization or "",
            "sapDistributionChannel": self.config.sap_distribution_channel or "",
            "sapSector": self.config.sap_sector or "",
        }
        for key, value in details.items():
            if not value:
                raise ConfigurationError(f"sapOrganizationDetails {key} is empty")
        return details

    def sap_product(self) -> Dict[str, str]:
        product = {
            "sapCode": self.config.sap_code or "",
            "sapOfficeCode": self.config.sap_office_code or "",
        }
        for key, value in product.items():
            if not value:
                raise ConfigurationError(f"sapProduct {key} is empty")
        return product

    def build_items(self, order: PaymentOrder) -> List[Dict[str, Any]]:
        sap_product = self.sap_product()
        items = []
        for fine, fee_line in zip(order.fines, order.fee_lines):
            items.append({
                "sapProduct": sap_product,
                "description": fee_line.description,
                "productCode": self.resolve_product_code(fine),
                "unitPrice": fine.balance,
                "units": 1,
                "vatPercentage": 0,
            })
        if order.transaction_fee:
            items.append({
                "sapProduct": sap_product,
                "description": TRANSACTION_FEE_DESCRIPTION,
                "productCode": self.config.transaction_fee_product_code or self.config.product_code or "",
                "unitPrice": order.transaction_fee,
                "units": 1,
                "vatPercentage": 0,
            })
        return items

    def build_payment_request(self, order: PaymentOrder) -> Dict[str, Any]:
        reference = "".join(c for c in f"{order.transaction_id}{order.patron_id}" if c.isalpha())
        request: Dict[str, Any] = {
            "usePricesWithoutVat": True,
            "sapOrganizationDetails": self.sap_organization_details(),
            "stamp": order.transaction_id,
            "redirectUrls": {"success": order.return_url, "cancel": order.return_url},
            "callbackUrls": {"success": order.notify_url, "cancel": order.notify_url},
            "reference": reference,
            "currency": "EUR",
            "language": order.language,
            "amount": order.total,
            "customer": {"email": order.email},
        }
        if self.has_product_code_config():
            request["items"] = self.build_items(order)
        return request

    def request_headers(self, body: str, timestamp: str) -> Dict[str, str]:
        return {
            "X-TURKU-SP": self.config.platform_name,
            "X-TURKU-TS": timestamp,
            "X-TURKU-OID": self.config.o_id,
            "X-MERCHANT-ID": str(self.config.merchant_id),
            "Content-Type": "application/json",
            "Authorization": turku_hash(
                {}, body, self.config.secret, timestamp, self.config.platform_name
            ),
        }

    # ── send_payment ────────────────────────────────────────
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        payment_request = self.build_payment_request(order)
        body = json.dumps(payment_request)
        timestamp = turku_timestamp()

        response = self.send_request("POST", self.config.url, body, self.request_headers(body, timestamp))

        response_headers = {k.lower(): v for k, v in response.headers.items()}
        expected = turku_hash(
            {},
            response.text,
            self.config.secret,
            response_headers.get("x-turku-ts", ""),
            self.config.platform_name,
        )
        if not hashes_match(expected, response_headers.get("authorization")):
            raise GatewayRequestError(
                "exception sending payment: Hash authorization is invalid.",
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
        return self.redirect_to_payment(href)

    # ── parse_callback ──────────────────────────────────────
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        method = request.method.upper()
        # Payment response is a GET request and notify is a POST request
        if method == "GET":
            params: Dict[str, Any] = dict(request.query)
            self.require_fields(params, GET_CALLBACK_FIELDS, allow_empty=False)
            body = ""
            timestamp = params["X-TURKU-TS"]
            signature = params["Authorization"]
        elif method == "POST":
            params = {name: request.header(name) for name in POST_CALLBACK_HEADERS}
            self.require_fields(params, POST_CALLBACK_HEADERS, allow_empty=False)
            body = request.body
            timestamp = params["X-Turku-Ts"]
            signature = params["Authorization"]
        else:
            raise CallbackValidationError("The request was not POST or GET", {"method": method})

        expected = turku_hash(params, body, self.config.secret, timestamp, self.config.platform_name)
        if not hashes_match(expected, signature):
            raise CallbackValidationError("parameter Authorization validation failed", {"params": params})

        if method == "POST":
            # For the notify request the checkout parameters are in the body
            payload: Optional[Dict[str, Any]] = request.json_body()
            if not payload or not payload.get("checkout-stamp") or not payload.get("checkout-status"):
                raise CallbackValidationError(
                    "missing or empty checkout parameters in notify body", {"body": body}
                )
            params = payload

        status = str(params["checkout-status"])
        return GatewayResponse(
            transaction_id=str(params["checkout-stamp"]),
            status=status,
            outcome=checkout_outcome(status),
            reference=params.get("checkout-reference"),
            params=params,
        )
