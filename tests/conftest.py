import os
import pytest
from httpx import AsyncClient, ASGITransport
from typing import AsyncGenerator
import json
from unittest.mock import MagicMock

# Set test environment vars before importing app
os.environ["ENVIRONMENT"] = "testing"
os.environ["SUPABASE_URL"] = "http://localhost:8000"
os.environ["SUPABASE_KEY"] = "dummy"
os.environ["TRANSACTION_STORE"] = "memory"
os.environ["DEFAULT_LOCALE"] = "fi"
os.environ["ONLINE_PAYMENT_SOURCES"] = json.dumps({
    "library1": {
        "handler": "CPU",
        "merchantId": "finna-source",
        "secret": "cpu-secret",
        "url": "https://cpu.example.com/api",
        "productCode": "FINE",
        "supportedLanguages": "fi=fi:sv=sv:en=en",
    },
    "library2": {
        "handler": "Paytrail",
        "merchantId": "13466",
        "secret": "6pKF4jkv97zmqBJ3ZL8gUw5DfT2NMQ",
    },
    "library3": {
        "handler": "PaytrailPaymentAPI",
        "merchantId": "375917",
        "secret": "SAIPPUAKAUPPIAS",
        "productCode": "LIB",
    },
})

from main import app
from core.config import GatewayConfig
from schemas import FineData, Patron, UserInfo
from services.event_log import InMemoryEventLog, get_event_log
from services.transaction_store import InMemoryTransactionStore, get_transaction_store
from services.translator import Translator
from routers.payments import get_http_session

@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def event_log():
    return InMemoryEventLog()


@pytest.fixture
def translator():
    return Translator("en")


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def make_response():
    """Factory for fake requests.Response objects"""
    def _make(status_code=200, body="", headers=None):
        resp = MagicMock()
        resp.status_code = status_code
        resp.text = body
        resp.headers = headers or {}
        resp.json.side_effect = lambda: json.loads(body)
        return resp
    return _make


@pytest.fixture
def make_handler(store, event_log, session):
    """Build a handler class with the shared store, event log and fake session"""
    def _make(handler_class, config, locale="en"):
        return handler_class(GatewayConfig(**config), store, event_log, locale=locale, session=session)
    return _make


@pytest.fixture
def user():
    return UserInfo(id=1, firstname="Maija", lastname="Meikäläinen", email="maija@example.com")


@pytest.fixture
def patron():
    return Patron(cat_username="12345", id="p1")


@pytest.fixture
def fines():
    return [
        FineData(fine="overdue", organization="org1", title="Seitsemän veljestä", balance=150, fine_id="f1"),
        FineData(fine="lost", organization="org1", title="", balance=1000, fine_id="f2"),
    ]


@pytest.fixture
def start_args(user, patron, fines):
    """Keyword arguments of start_payment"""
    return dict(
        return_base_url="https://finna.example/return",
        notify_base_url="https://finna.example/notify",
        user=user,
        patron=patron,
        source_id="library1",
        amount=1150,
        transaction_fee=50,
        fines=fines,
        currency="EUR",
        payment_param="finna_payment_id",
    )


# Mock Supabase
@pytest.fixture
def mock_supabase():
    mock_instance = MagicMock()

    # Simple chain mocking setup
    def make_chain(return_val):
        chain = MagicMock()
        chain.select.return_value = chain
        chain.insert.return_value = chain
        chain.update.return_value = chain
        chain.delete.return_value = chain
        chain.eq.return_value = chain
        chain.limit.return_value = chain
        chain.order.return_value = chain
        chain.execute.return_value = MagicMock(data=return_val)
        return chain

    # Store dynamic tables
    tables = {}

    def table_func(table_name):
        if table_name not in tables:
            tables[table_name] = make_chain([])
        return tables[table_name]

    mock_instance.table.side_effect = table_func
    mock_instance.tables = tables
    return mock_instance


@pytest.fixture
async def async_client(store, event_log, session) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_transaction_store] = lambda: store
    app.dependency_overrides[get_event_log] = lambda: event_log
    app.dependency_overrides[get_http_session] = lambda: session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
