"""
Error Monitoring and Logging
Structured error logging for online payments: every handled error is written
with a dump of its context so failed payments can be diagnosed afterwards.
"""
import logging
import enum
from datetime import datetime
from typing import Any, Mapping, Optional
from functools import wraps
from fastapi import HTTPException, Request
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Keys whose values never end up in the log
MASKED_KEYS = {"secret", "authorization", "signature", "hash", "authcode", "return_authcode"}

# Dumps stop descending once the indentation grows past this
MAX_DUMP_INDENT = 6


def _to_mapping(value: Any):
    """Return (label, mapping) for containers, or (None, None) for scalars"""
    if isinstance(value, BaseModel):
        return type(value).__name__, value.model_dump()
    if isinstance(value, Mapping):
        return None, dict(value)
    if isinstance(value, (list, tuple, set)):
        return None, dict(enumerate(value))
    if isinstance(value, (str, bytes, int, float, bool, enum.Enum, datetime)) or value is None:
        return None, None
    if hasattr(value, "__dict__"):
        return type(value).__name__, {k: v for k, v in vars(value).items() if not k.startswith("_")}
    return None, None


def dump_data(data: Mapping[str, Any], indent: str = "") -> str:
    """
    Render a data mapping with mixed content for the log.

    Nested mappings, sequences and objects are rendered recursively with
    two-space indentation; the rendering is depth-limited.
    """
    if len(indent) > MAX_DUMP_INDENT:
        return ""

    results = []
    for key, value in data.items():
        if str(key).lower() in MASKED_KEYS:
            results.append(f"{key}: '***'")
            continue
        label, mapping = _to_mapping(value)
        if label:
            key = f"{key}: {label}"
        if mapping is not None:
            results.append(f"{key}: {{\n{dump_data(mapping, indent + '  ')}\n{indent}}}")
        else:
            results.append(f"{key}: {value!r}")

    return indent + f",\n{indent}".join(results)


def log_payment_error(msg: str, data: Optional[Mapping[str, Any]] = None, log: Optional[logging.Logger] = None):
    """Log an online payment error with an optional context dump"""
    msg = f"Online payment: {msg}"
    if data:
        msg += ". Additional data:\n" + dump_data(data)
    (log or logger).error(msg)


def capture_exception(error: Exception, context: Optional[dict] = None):
    """Capture exception and log it"""
    error_msg = f"Unhandled exception: {error}"
    if context:
        context_str = ", ".join([f"{k}={v}" for k, v in context.items()])
        error_msg += f" | Context: {context_str}"
    logger.error(error_msg, exc_info=True)


def log_error_with_context(error: Exception, request: Optional[Request] = None):
    """Log error with request context"""
    context = {}

    if request:
        context["request"] = {
            "method": request.method,
            "url": str(request.url),
            "path": request.url.path,
            "client": request.client.host if request.client else None,
        }
        # Add headers (excluding sensitive ones)
        if hasattr(request, "headers"):
            headers = dict(request.headers)
            sensitive_headers = ["authorization", "cookie", "x-api-key", "signature"]
            for header in sensitive_headers:
                headers.pop(header.lower(), None)
            context["headers"] = headers

    capture_exception(error, context)


def error_handler(func):
    """Decorator logging unhandled endpoint errors with request context"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception as e:
            request = kwargs.get("request")
            if request is None:
                for arg in args:
                    if isinstance(arg, Request):
                        request = arg
                        break
            log_error_with_context(e, request)
            raise

    return wrapper
