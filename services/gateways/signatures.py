"""
Signature and hash schemes of the supported payment gateways.

Byte layouts follow each gateway's wire contract; comparisons are constant-time.
"""
import hashlib
import hmac
from typing import Any, Iterable, Mapping, Optional

CHECKOUT_PREFIX = "checkout-"


def sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def hashes_match(expected: str, received: Optional[str]) -> bool:
    """Constant-time equality check of two signature strings"""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), str(received).encode("utf-8"))


# CPU: sha256 over '&'-joined fields followed by the secret

def cpu_hash(fields: Iterable[Any], secret: str) -> str:
    return sha256_hex("&".join([str(f) for f in fields] + [secret]))


# Paytrail E2

def paytrail_e2_authcode(values: Iterable[Any], secret: str) -> str:
    """AUTHCODE of a payment form: secret first, then PARAMS_IN values"""
    return sha256_hex("|".join([secret] + [str(v) for v in values])).upper()


def paytrail_e2_return_authcode(
    order_number: str, payment_id: str, timestamp: str, status: str, secret: str
) -> str:
    payload = "|".join([order_number, payment_id, timestamp, status])
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest().upper()


# Turku Payment (E2 derivative): secret last

def turku_e2_authcode(values: Iterable[Any], secret: str) -> str:
    return sha256_hex("|".join([str(v) for v in values] + [secret])).upper()


# Paytrail Payment API / Turku Payment API

def _checkout_lines(params: Mapping[str, Any]) -> list:
    keys = sorted(k for k in params if k.startswith(CHECKOUT_PREFIX))
    lines = []
    for key in keys:
        value = params[key]
        # Response headers may arrive as lists
        if isinstance(value, (list, tuple)):
            value = value[0]
        lines.append(f"{key}:{value}")
    return lines


def paytrail_hmac(params: Mapping[str, Any], body: str, secret: str) -> str:
    """HMAC-SHA256 over sorted checkout- parameters followed by the body"""
    payload = "\n".join(_checkout_lines(params) + [body])
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def turku_hash(
    params: Mapping[str, Any], body: str, secret: str, timestamp: str, platform_name: str
) -> str:
    """Authorization hash: platform name and timestamp, then body (or parameters), then secret"""
    content = body or "\n".join(_checkout_lines(params) + [body])
    return sha256_hex(f"{platform_name}{timestamp}{content}{secret}")
