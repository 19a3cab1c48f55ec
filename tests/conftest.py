"""Pytest fixtures for the checkout pipeline (in-memory stores, mocked gateway)."""

import itertools

import httpx
import pytest

from checkout_service.clients import GatewayClient
from checkout_service.config import Settings
from checkout_service.stores import InMemoryCartStore, InMemoryCatalog, InMemoryOrderStore, InMemoryPaymentStore
from checkout_service.workflow import SettlementOrchestrator

SECRET_KEY = "8gBm/:&EnhH.1/q("
PAYMENT_URL = "https://gateway.test/api/epay/main/v2/form"
STATUS_URL = "https://gateway.test/api/epay/transaction/status/"
REDIRECT_URL = "https://gateway.test/pay/session-1"


class FakeGateway:
    """httpx.MockTransport handler that records requests and replays canned answers."""

    def __init__(self):
        self.requests = []
        self.form_status = 302
        self.form_headers = {"Location": REDIRECT_URL}
        self.form_body = b""
        self.status_code = 200
        self.status_body = None
        self.raise_error = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_error is not None:
            raise self.raise_error
        if request.method == "POST":
            return httpx.Response(self.form_status, headers=self.form_headers, content=self.form_body)
        if self.status_body is not None:
            return httpx.Response(self.status_code, content=self.status_body)
        params = request.url.params
        return httpx.Response(
            self.status_code,
            json={
                "product_code": params["product_code"],
                "transaction_uuid": params["transaction_uuid"],
                "total_amount": float(params["total_amount"]),
                "status": "COMPLETE",
                "ref_id": "000AE01",
            },
        )

    @property
    def form_posts(self):
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        merchant_code="EPAYTEST",
        secret_key=SECRET_KEY,
        payment_url=PAYMENT_URL,
        status_check_url=STATUS_URL,
        frontend_url="https://shop.test/",
    )


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway(settings, fake_gateway):
    client = GatewayClient(settings, transport=httpx.MockTransport(fake_gateway))
    yield client
    client.close()


@pytest.fixture
def catalog() -> InMemoryCatalog:
    catalog = InMemoryCatalog()
    catalog.add_product("p1", seller_id="s1", price=500, stock=10, name="Tea")
    catalog.add_product("p2", seller_id="s2", price=250, stock=3, name="Mug")
    catalog.add_product("p3", seller_id="s1", price=100, stock=0, name="Sold out")
    return catalog


@pytest.fixture
def payments() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture
def orders() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def carts() -> InMemoryCartStore:
    carts = InMemoryCartStore()
    carts.carts["u1"] = {"p1"}
    return carts


@pytest.fixture
def transaction_ids():
    counter = itertools.count(1)
    return lambda: f"251018-120000-T{next(counter):04d}"


@pytest.fixture
def orchestrator(settings, catalog, payments, orders, carts, gateway, transaction_ids) -> SettlementOrchestrator:
    return SettlementOrchestrator(
        settings=settings,
        catalog=catalog,
        payments=payments,
        orders=orders,
        carts=carts,
        gateway=gateway,
        id_generator=transaction_ids,
    )
