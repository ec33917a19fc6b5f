from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from typing import Optional
from urllib.parse import parse_qsl
import logging

import requests

from core.exceptions import ConfigurationError
from models import PaymentResult, RedirectMethod
from schemas import CallbackRequest, PaymentResponseResult, StartPaymentRequest
from services.error_monitoring import error_handler
from services.event_log import EventLog, get_event_log
from services.payment_service import OnlinePaymentService, TransactionNotFound
from services.transaction_store import TransactionStore, get_transaction_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/online-payment", tags=["online-payment"])

_session: Optional[requests.Session] = None


def get_http_session() -> requests.Session:
    """Shared outbound session for gateway requests"""
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


def get_payment_service(
    store: TransactionStore = Depends(get_transaction_store),
    event_log: EventLog = Depends(get_event_log),
    session: requests.Session = Depends(get_http_session),
) -> OnlinePaymentService:
    return OnlinePaymentService(store, event_log, session)


async def build_callback_request(request: Request) -> CallbackRequest:
    """Transport-neutral copy of the incoming gateway request"""
    body = (await request.body()).decode("utf-8", "replace")
    post = {}
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith("application/x-www-form-urlencoded"):
        post = dict(parse_qsl(body, keep_blank_values=True))
    return CallbackRequest(
        method=request.method,
        query=dict(request.query_params),
        post=post,
        headers=dict(request.headers),
        body=body,
    )


@router.post("/{source_id}/start")
@error_handler
async def start_payment(
    source_id: str,
    data: StartPaymentRequest,
    request: Request,
    service: OnlinePaymentService = Depends(get_payment_service),
):
    """Start an online payment and redirect the patron to the payment service"""
    try:
        redirect = service.start(source_id, data)
    except ConfigurationError as e:
        if "not enabled" in e.message:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
        raise

    if redirect is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "online_payment_failed"}
        )
    if redirect.method == RedirectMethod.POST:
        return HTMLResponse(content=redirect.html)
    return RedirectResponse(url=redirect.url, status_code=status.HTTP_302_FOUND)


@router.api_route("/response", methods=["GET", "POST"], response_model=PaymentResponseResult)
@error_handler
async def payment_response(
    request: Request,
    service: OnlinePaymentService = Depends(get_payment_service),
):
    """Browser return from the payment service"""
    callback = await build_callback_request(request)
    try:
        return service.response_result(callback)
    except TransactionNotFound as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.api_route("/notify", methods=["GET", "POST"])
@error_handler
async def payment_notify(
    request: Request,
    service: OnlinePaymentService = Depends(get_payment_service),
):
    """Server-to-server notification from the payment service"""
    callback = await build_callback_request(request)
    try:
        transaction, result, marked = service.process_response(callback)
    except TransactionNotFound as e:
        logger.warning(f"Online payment notify: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if result == PaymentResult.FAILURE:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment processing failed"
        )
    return {"success": True, "transaction_id": transaction.transaction_id, "marked": marked}
