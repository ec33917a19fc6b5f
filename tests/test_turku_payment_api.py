import hashlib
import json
import pytest

from models import PaymentResult, TransactionStatus
from schemas import CallbackRequest
from services.gateways.turku_payment_api import TurkuPaymentAPIHandler
from gateway_configs import TURKU_API_CONFIG

SECRET = TURKU_API_CONFIG["secret"]
PLATFORM = TURKU_API_CONFIG["platformName"]


def turku_auth(timestamp, content, secret=SECRET):
    return hashlib.sha256(f"{PLATFORM}{timestamp}{content}{secret}".encode()).hexdigest()


@pytest.fixture
def handler(make_handler):
    return make_handler(TurkuPaymentAPIHandler, TURKU_API_CONFIG, locale="de")


@pytest.fixture
def turku_api(session, make_response):
    sent = {}

    def answer(valid=True):
        def request(method, url, data=None, headers=None, **kwargs):
            sent.update(url=url, body=data.decode("utf-8"), headers=headers)
            body = json.dumps({"transactionId": "t-1", "href": "https://maksu.turku.example/pay/t-1"})
            ts = "2024-05-01T10:00:00Z"
            return make_response(201, body, {
                "X-Turku-Ts": ts,
                "Authorization": turku_auth(ts, body, SECRET if valid else "x"),
            })
        session.request.side_effect = request
        return sent
    return answer


def test_create_payment(handler, store, start_args, turku_api):
    sent = turku_api()
    redirect = handler.start_payment(**start_args)
    assert redirect.url == "https://maksu.turku.example/pay/t-1"

    headers = sent["headers"]
    assert headers["X-TURKU-SP"] == PLATFORM
    assert headers["X-TURKU-OID"] == "OID1"
    assert headers["X-MERCHANT-ID"] == "turku"
    assert headers["Authorization"] == turku_auth(headers["X-TURKU-TS"], sent["body"])

    body = json.loads(sent["body"])
    assert body["usePricesWithoutVat"] is True
    assert body["sapOrganizationDetails"] == {
        "sapSalesOrganization": "ORG1",
        "sapDistributionChannel": "01",
        "sapSector": "02",
    }
    assert body["currency"] == "EUR"
    assert body["language"] == "FI"
    assert body["customer"] == {"email": "maija@example.com"}
    assert body["reference"].isalpha()
    assert body["reference"] == "".join(c for c in body["stamp"] + "12345" if c.isalpha())
    assert body["items"][0]["sapProduct"] == {"sapCode": "SAP1", "sapOfficeCode": "OFFICE1"}
    assert body["items"][0]["productCode"] == "LIB"
    assert store.get_transaction(body["stamp"]).status == TransactionStatus.PENDING


def test_missing_sap_details(make_handler, store, start_args, session, mocker):
    config = {k: v for k, v in TURKU_API_CONFIG.items() if k != "sapSector"}
    create = mocker.spy(store, "create_transaction")
    assert make_handler(TurkuPaymentAPIHandler, config).start_payment(**start_args) is None
    session.request.assert_not_called()
    create.assert_not_called()


def test_invalid_response_authorization(handler, store, start_args, turku_api):
    sent = turku_api(valid=False)
    assert handler.start_payment(**start_args) is None
    assert store.get_transaction(json.loads(sent["body"])["stamp"]) is None


@pytest.fixture
def started(handler, start_args, turku_api, store):
    sent = turku_api()
    handler.start_payment(**start_args)
    return store.get_transaction(json.loads(sent["body"])["stamp"])


def get_callback(stamp, status, secret=SECRET):
    params = {
        "checkout-amount": "1200",
        "checkout-reference": "abc",
        "checkout-stamp": stamp,
        "checkout-status": status,
        "checkout-provider": "nordea",
        "checkout-transaction-id": "t-1",
        "X-TURKU-SP": PLATFORM,
        "X-TURKU-TS": "2024-05-01T10:00:00Z",
    }
    lines = "\n".join(f"{k}:{params[k]}" for k in sorted(k for k in params if k.startswith("checkout-")))
    params["Authorization"] = turku_auth(params["X-TURKU-TS"], lines + "\n", secret)
    return CallbackRequest(method="GET", query=params)


def post_callback(stamp, status, secret=SECRET):
    body = json.dumps({"checkout-stamp": stamp, "checkout-status": status})
    ts = "2024-05-01T10:00:00Z"
    return CallbackRequest(
        method="POST",
        headers={"x-turku-sp": PLATFORM, "x-turku-ts": ts, "authorization": turku_auth(ts, body, secret)},
        body=body,
    )


def test_get_callback_paid(handler, started, store):
    result = handler.process_payment_response(started, get_callback(started.transaction_id, "ok"))
    assert result == (PaymentResult.SUCCESS, True)
    assert store.get_transaction(started.transaction_id).status == TransactionStatus.PAID


def test_post_notify_paid_then_return_is_idempotent(handler, started, store):
    assert handler.process_payment_response(started, post_callback(started.transaction_id, "ok")) == (
        PaymentResult.SUCCESS, True
    )
    assert handler.process_payment_response(started, get_callback(started.transaction_id, "ok")) == (
        PaymentResult.SUCCESS, False
    )


def test_post_callback_cancel(handler, started, store):
    result = handler.process_payment_response(started, post_callback(started.transaction_id, "fail"))
    assert result == (PaymentResult.CANCEL, False)
    assert store.get_transaction(started.transaction_id).status == TransactionStatus.CANCELED


def test_tampered_callbacks(handler, started):
    for request in (
        get_callback(started.transaction_id, "ok", secret="x"),
        post_callback(started.transaction_id, "ok", secret="x"),
    ):
        assert handler.process_payment_response(started, request) == (PaymentResult.FAILURE, False)


def test_missing_header(handler, started):
    request = post_callback(started.transaction_id, "ok")
    del request.headers["x-turku-ts"]
    assert handler.process_payment_response(started, request) == (PaymentResult.FAILURE, False)


def test_unsupported_method(handler, started):
    request = get_callback(started.transaction_id, "ok")
    request.method = "PUT"
    assert handler.process_payment_response(started, request) == (PaymentResult.FAILURE, False)
