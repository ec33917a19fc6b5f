"""
CPU (Ceepos) Payment Handler Implementation
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from core.exceptions import (
    CallbackValidationError,
    ConfigurationError,
    GatewayRequestError,
    GatewayStatusError,
)
from models import CallbackOutcome, CpuStatus
from schemas import CallbackRequest, FineData, GatewayResponse, RedirectInstruction
from core.config import parse_mappings
from services.translator import language_code
from .base import NAME_PLACEHOLDER, TRANSACTION_FEE_DESCRIPTION, PaymentHandlerBase, PaymentOrder
from .signatures import cpu_hash, hashes_match

logger = logging.getLogger(__name__)

CPU_API_VERSION = "2.1.2"
CPU_MODE = 3
CPU_DESCRIPTION_MAX_LENGTH = 100
CPU_PRODUCT_CODE_MAX_LENGTH = 25

_TAG_RE = re.compile(r"<[^>]*>")


def sanitize(value: Any) -> str:
    """Strip tags and surrounding whitespace, drop ';' (the CPU field separator)"""
    return _TAG_RE.sub("", str(value).strip()).replace(";", "")


class CPUHandler(PaymentHandlerBase):
    """Ceepos payment service: JSON order request, redirect to PaymentAddress"""

    required_config = ("merchant_id", "secret", "url")
    description_max_length = CPU_DESCRIPTION_MAX_LENGTH
    product_code_max_length = CPU_PRODUCT_CODE_MAX_LENGTH

    @property
    def name(self) -> str:
        return "CPU"

    # ── helpers ──────────────────────────────────────────────
    def get_language(self) -> str:
        # Only languages listed in supportedLanguages are sent
        return parse_mappings(self.config.supported_languages).get(language_code(self.locale), "")

    def fee_description(self, fine: FineData, max_length: Optional[int] = None) -> str:
        description = super().fee_description(fine, CPU_DESCRIPTION_MAX_LENGTH)
        if not description:
            return description
        # CPU only handles ISO-8859-1; ' would truncate the string
        description = description.encode("latin-1", "ignore").decode("latin-1")
        description = sanitize(description.replace("'", " "))
        return description[:CPU_DESCRIPTION_MAX_LENGTH]

    def build_products(self, order: PaymentOrder) -> List[Dict[str, Any]]:
        products = []
        for fine, fee_line in zip(order.fines, order.fee_lines):
            product = {
                "Code": sanitize(self.resolve_product_code(fine, fallback_to_fee_type=False)),
                "Amount": 1,
                "Price": fine.balance,
            }
            if fee_line.description:
                product["Description"] = fee_line.description
            products.append(product)
        if order.transaction_fee:
            products.append({
                "Code": sanitize(self.config.transaction_fee_product_code or self.config.product_code),
                "Amount": 1,
                "Price": order.transaction_fee,
                "Description": TRANSACTION_FEE_DESCRIPTION,
            })
        return products

    def build_payment(self, order: PaymentOrder) -> Dict[str, Any]:
        payment: Dict[str, Any] = {
            "ApiVersion": CPU_API_VERSION,
            "Source": sanitize(self.config.merchant_id),
            "Id": order.transaction_id,
            "Mode": CPU_MODE,
            "Action": "new",
            "Description": self.config.payment_description or "",
            "Products": self.build_products(order),
        }
        if order.email:
            payment["Email"] = order.email
        payment["FirstName"] = order.firstname or NAME_PLACEHOLDER
        payment["LastName"] = order.lastname or NAME_PLACEHOLDER
        if order.language:
            payment["Language"] = order.language
        payment["ReturnAddress"] = order.return_url
        payment["NotificationAddress"] = order.notify_url
        payment["Hash"] = self.payment_hash(payment)
        return payment

    def payment_hash(self, payment: Dict[str, Any]) -> str:
        fields: List[Any] = [payment["ApiVersion"], payment["Source"], payment["Id"], payment["Mode"]]
        if payment.get("Description"):
            fields.append(payment["Description"].replace(";", ""))
        for product in payment["Products"]:
            fields.append(product["Code"].replace(";", ""))
            for key in ("Amount", "Price"):
                if product.get(key):
                    fields.append(int(product[key]))
            for key in ("Description", "Taxcode"):
                if product.get(key):
                    fields.append(str(product[key]).replace(";", ""))
        for key in ("Email", "FirstName", "LastName", "Language"):
            if payment.get(key):
                fields.append(payment[key])
        fields += [payment["ReturnAddress"], payment["NotificationAddress"]]
        return cpu_hash(fields, sanitize(self.config.secret))

    # ── send_payment ────────────────────────────────────────
    def send_payment(self, order: PaymentOrder) -> RedirectInstruction:
        if not self.config.product_code:
            raise ConfigurationError("missing productCode configuration option")

        payment = self.build_payment(order)
        response = self.send_request(
            "POST",
            self.config.url,
            json.dumps(payment),
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get("Id") or not data.get("Status"):
            raise GatewayRequestError(
                "error starting payment, no response", {"payment": payment, "response": response.text}
            )

        details = {"payment": payment, "response": data}
        try:
            status = int(data["Status"])
        except (TypeError, ValueError) as e:
            raise GatewayRequestError("error starting payment, invalid status", details) from e
        if status in (CpuStatus.ERROR, CpuStatus.INVALID_REQUEST):
            # System error or request failed
            raise GatewayStatusError("error starting transaction", status, details)

        expected = cpu_hash(
            [order.transaction_id, status, data.get("Reference", ""), data.get("PaymentAddress", "")],
            self.config.secret,
        )
        if not hashes_match(expected, data.get("Hash")):
            raise GatewayRequestError("error starting transaction, invalid checksum", details)

        if status == CpuStatus.SUCCESS:
            raise GatewayStatusError("error starting transaction, transaction already processed", status, details)
        if status == CpuStatus.ID_EXISTS:
            raise GatewayStatusError("error starting transaction, order exists", status, details)
        if status == CpuStatus.CANCELLED:
            raise GatewayStatusError("error starting transaction, order cancelled", status, details)
        if status != CpuStatus.PENDING or not data.get("PaymentAddress"):
            raise GatewayStatusError(f"error starting transaction, unknown status {status}", status, details)

        logger.info(f"CPU payment {order.transaction_id} accepted, reference {data.get('Reference')}")
        return self.redirect_to_payment(data["PaymentAddress"])

    # ── parse_callback ──────────────────────────────────────
    def parse_callback(self, request: CallbackRequest) -> GatewayResponse:
        params = request.params()
        payload = request.json_body() or {}

        response: Dict[str, Any] = {}
        for name in ("Id", "Status", "Reference", "Hash"):
            if payload.get(name) is not None:
                response[name] = payload[name]
            elif params.get(name) is not None:
                response[name] = params[name]
            else:
                raise CallbackValidationError(
                    f"missing parameter {name} in payment response",
                    {"params": params, "payload": payload}
                )

        try:
            status = int(response["Status"])
        except (TypeError, ValueError):
            raise CallbackValidationError(
                f"invalid status {response['Status']} in payment response", {"params": params}
            )

        expected = cpu_hash([response["Id"], status, response["Reference"]], self.config.secret)
        if not hashes_match(expected, str(response["Hash"])):
            raise CallbackValidationError(
                "error processing response: invalid checksum", {"params": params, "payload": payload}
            )

        outcome = {
            CpuStatus.SUCCESS: CallbackOutcome.PAID,
            CpuStatus.CANCELLED: CallbackOutcome.CANCELED,
            CpuStatus.PENDING: CallbackOutcome.PENDING,
        }.get(status, CallbackOutcome.UNKNOWN)

        return GatewayResponse(
            transaction_id=str(response["Id"]),
            status=str(status),
            outcome=outcome,
            reference=str(response["Reference"]),
            params={**params, **response},
        )
