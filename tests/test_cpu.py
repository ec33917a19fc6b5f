import hashlib
import json
import pytest

from core.config import GatewayConfig
from core.exceptions import ConfigurationError
from models import PaymentResult, RedirectMethod, TransactionStatus
from schemas import CallbackRequest, FineData
from services.gateways.cpu import CPUHandler, sanitize
from gateway_configs import CPU_CONFIG

SECRET = CPU_CONFIG["secret"]


def sha(*parts):
    return hashlib.sha256("&".join(str(p) for p in parts).encode()).hexdigest()


@pytest.fixture
def handler(make_handler):
    return make_handler(CPUHandler, CPU_CONFIG)


@pytest.fixture
def cpu_gateway(session, make_response):
    """Fake CPU endpoint answering with the given status and a valid hash"""
    sent = {}

    def answer(status=2, address="https://cpu.example.com/pay/1", reference="REF1", valid=True):
        def request(method, url, data=None, **kwargs):
            payment = json.loads(data)
            sent.update(payment=payment, url=url, kwargs=kwargs)
            digest = sha(payment["Id"], status, reference, address, SECRET)
            return make_response(200, json.dumps({
                "Id": payment["Id"],
                "Status": status,
                "Reference": reference,
                "PaymentAddress": address,
                "Hash": digest if valid else "0" * 64,
            }))
        session.request.side_effect = request
        return sent
    return answer


def callback(transaction_id, status, reference="REF1", secret=SECRET, as_json=False):
    params = {
        "Id": transaction_id,
        "Status": str(status),
        "Reference": reference,
        "Hash": sha(transaction_id, status, reference, secret),
    }
    if as_json:
        return CallbackRequest(method="POST", body=json.dumps(params))
    return CallbackRequest(method="GET", query=params)


def test_missing_url_config(store, event_log):
    config = {k: v for k, v in CPU_CONFIG.items() if k != "url"}
    with pytest.raises(ConfigurationError) as exc:
        CPUHandler(GatewayConfig(**config), store, event_log)
    assert "url" in exc.value.message


def test_happy_path(handler, store, start_args, cpu_gateway):
    sent = cpu_gateway()
    start_args.update(amount=1000, transaction_fee=50, fines=[FineData(fine="overdue", balance=1000)])

    redirect = handler.start_payment(**start_args)

    assert redirect.method == RedirectMethod.GET
    assert redirect.url == "https://cpu.example.com/pay/1"
    payment = sent["payment"]
    assert sent["url"] == CPU_CONFIG["url"]
    assert sent["kwargs"]["timeout"] > 0
    assert [p["Price"] for p in payment["Products"]] == [1000, 50]
    assert payment["Products"][0]["Code"] == "FINE"
    assert payment["Products"][1]["Description"] == "Palvelumaksu / Serviceavgift / Transaction fee"
    assert payment["Language"] == "en"
    assert payment["FirstName"] == "Maija"

    transaction = store.get_transaction(payment["Id"])
    assert transaction.status == TransactionStatus.PENDING
    assert (transaction.amount, transaction.transaction_fee) == (1000, 50)

    assert handler.process_payment_response(transaction, callback(payment["Id"], 1)) == (PaymentResult.SUCCESS, True)
    assert store.get_transaction(payment["Id"]).status == TransactionStatus.PAID


def test_payment_hash_layout(handler, start_args, cpu_gateway):
    sent = cpu_gateway()
    start_args.update(transaction_fee=0, fines=[FineData(fine="lost", title="Book", balance=1150)])
    handler.start_payment(**start_args)

    p = sent["payment"]
    product = p["Products"][0]
    expected = sha(
        "2.1.2", "finna-source", p["Id"], 3,
        product["Code"], 1, 1150, product["Description"],
        "maija@example.com", "Maija", "Meikäläinen", "en",
        p["ReturnAddress"], p["NotificationAddress"], SECRET,
    )
    assert p["Hash"] == expected
    assert len(p["Products"]) == 1


def test_no_transaction_fee_line_without_fee(handler, start_args, cpu_gateway):
    sent = cpu_gateway()
    start_args.update(transaction_fee=0)
    handler.start_payment(**start_args)
    assert len(sent["payment"]["Products"]) == 2


@pytest.mark.parametrize("status", [0, 1, 97, 98, 99])
def test_start_error_statuses_persist_nothing(handler, store, start_args, cpu_gateway, status):
    sent = cpu_gateway(status=status)
    assert handler.start_payment(**start_args) is None
    assert store.get_transaction(sent["payment"]["Id"]) is None


def test_start_invalid_response_hash(handler, store, start_args, cpu_gateway):
    sent = cpu_gateway(valid=False)
    assert handler.start_payment(**start_args) is None
    assert store.get_transaction(sent["payment"]["Id"]) is None


def test_start_non_numeric_status(handler, store, start_args, session, make_response, mocker):
    session.request.return_value = make_response(200, json.dumps({
        "Id": "x",
        "Status": "pending",
        "Reference": "REF1",
        "PaymentAddress": "https://cpu.example.com/pay/1",
        "Hash": "0" * 64,
    }))
    create = mocker.spy(store, "create_transaction")
    assert handler.start_payment(**start_args) is None
    create.assert_not_called()


def test_start_http_error(handler, store, start_args, session, make_response):
    session.request.return_value = make_response(500, "oops")
    assert handler.start_payment(**start_args) is None


def test_start_without_product_code(make_handler, session, start_args):
    config = {k: v for k, v in CPU_CONFIG.items() if k != "productCode"}
    handler = make_handler(CPUHandler, config)
    assert handler.start_payment(**start_args) is None
    session.request.assert_not_called()


def test_description_truncation_is_latin1_safe(handler):
    fine = FineData(fine="overdue", title="Kalevala 'ääni' <b>;" + "ž" * 200 + "x" * 500)
    description = handler.fee_description(fine)
    assert len(description) <= 100
    description.encode("latin-1")
    assert "'" not in description
    assert ";" not in description
    assert "<b>" not in description


def test_sanitize():
    assert sanitize("  <i>a;b</i> ") == "ab"


@pytest.fixture
def started(handler, start_args, cpu_gateway, store):
    sent = cpu_gateway()
    handler.start_payment(**start_args)
    return store.get_transaction(sent["payment"]["Id"])


def test_json_callback_and_duplicate(handler, started, store):
    request = callback(started.transaction_id, 1, as_json=True)
    assert handler.process_payment_response(started, request) == (PaymentResult.SUCCESS, True)
    assert handler.process_payment_response(started, request) == (PaymentResult.SUCCESS, False)


def test_cancel_callback(handler, started, store):
    assert handler.process_payment_response(started, callback(started.transaction_id, 0)) == (PaymentResult.CANCEL, False)
    assert store.get_transaction(started.transaction_id).status == TransactionStatus.CANCELED


def test_pending_callback(handler, started):
    assert handler.process_payment_response(started, callback(started.transaction_id, 2)) == (PaymentResult.PENDING, False)


def test_tampered_callback(handler, started, store):
    request = callback(started.transaction_id, 1, secret="wrong")
    assert handler.process_payment_response(started, request) == (PaymentResult.FAILURE, False)
    assert store.get_transaction(started.transaction_id).status == TransactionStatus.PENDING


def test_callback_missing_parameter(handler, started):
    request = callback(started.transaction_id, 1)
    del request.query["Reference"]
    assert handler.process_payment_response(started, request) == (PaymentResult.FAILURE, False)


def test_callback_other_transaction(handler, started):
    assert handler.process_payment_response(started, callback("other", 1)) == (PaymentResult.FAILURE, False)
