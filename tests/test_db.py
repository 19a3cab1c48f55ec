"""Tests for the SQLAlchemy stores (SQLite in memory)."""
import pytest
from sqlalchemy.pool import StaticPool

from checkout_service.db import (
    RedisCartStore,
    SqlCatalog,
    SqlOrderStore,
    SqlPaymentStore,
    init_db,
    make_engine,
)
from checkout_service.errors import DuplicateOrder, InsufficientStock, InvalidState, NotFound, PersistenceError
from checkout_service.models import (
    CartLineItem,
    Order,
    OrderLineItem,
    OrderStatus,
    PaymentItem,
    PaymentRecord,
    PaymentStatus,
)
from checkout_service.stores import InMemoryCartStore
from checkout_service.workflow import SettlementOrchestrator


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_catalog(engine):
    catalog = SqlCatalog(engine)
    catalog.add_product("p1", seller_id="s1", price=500, stock=10, name="Tea")
    catalog.add_product("p2", seller_id="s2", price=250, stock=3, name="Mug")
    return catalog


def payment(txn="251018-120000-AAAAA", status=PaymentStatus.PENDING):
    return PaymentRecord(
        amount=1000,
        user_id="u1",
        transaction_uuid=txn,
        items=[PaymentItem(product_id="p1", quantity=2)],
        status=status,
    )


def order(txn="251018-120000-AAAAA"):
    return Order(
        user_id="u1",
        amount=1000,
        products=[OrderLineItem(product_id="p1", seller_id="s1", quantity=2, price=500)],
        transaction_id=txn,
    )


def test_catalog_batched_read_keeps_request_order(sql_catalog):
    products = sql_catalog.get_products(["p2", "ghost", "p1", "p2"])
    assert [p.id for p in products] == ["p2", "p1"]
    assert sql_catalog.get_product("ghost") is None


def test_catalog_conditional_stock_update(sql_catalog):
    assert sql_catalog.adjust_stock("p1", -4) == 6
    assert sql_catalog.adjust_stock("p1", 1) == 7

    with pytest.raises(InsufficientStock) as exc:
        sql_catalog.adjust_stock("p1", -8)
    assert exc.value.available == 7
    assert sql_catalog.get_product("p1").stock == 7

    with pytest.raises(NotFound):
        sql_catalog.adjust_stock("ghost", 1)


def test_payment_round_trip_and_compare_and_swap(engine):
    store = SqlPaymentStore(engine)
    store.create(payment())

    loaded = store.get_by_transaction("251018-120000-AAAAA")
    assert loaded.amount == 1000
    assert loaded.product_ids == ["p1"]
    assert loaded.items[0].quantity == 2
    assert loaded.status == PaymentStatus.PENDING

    assert store.transition("251018-120000-AAAAA", PaymentStatus.PENDING, PaymentStatus.SUCCESS) is True
    assert store.transition("251018-120000-AAAAA", PaymentStatus.PENDING, PaymentStatus.SUCCESS) is False
    assert store.get_by_transaction("251018-120000-AAAAA").status == PaymentStatus.SUCCESS
    assert store.get_by_transaction("missing") is None


def test_payment_illegal_transition(engine):
    store = SqlPaymentStore(engine)
    store.create(payment())
    with pytest.raises(InvalidState):
        store.transition("251018-120000-AAAAA", PaymentStatus.FAILED, PaymentStatus.SUCCESS)


def test_payment_transaction_uuid_is_unique(engine):
    store = SqlPaymentStore(engine)
    store.create(payment())
    with pytest.raises(PersistenceError):
        store.create(payment())


def test_order_unique_per_transaction(engine):
    store = SqlOrderStore(engine)
    first = order()
    store.create(first)
    with pytest.raises(DuplicateOrder):
        store.create(order())

    loaded = store.get_by_transaction("251018-120000-AAAAA")
    assert loaded.id == first.id
    assert loaded.products[0].price == 500


def test_order_guarded_status_update(engine):
    store = SqlOrderStore(engine)
    created = order()
    store.create(created)
    assert store.transition(created.id, OrderStatus.CREATED, OrderStatus.CANCELLED) is True
    assert store.transition(created.id, OrderStatus.CREATED, OrderStatus.CANCELLED) is False
    assert store.get(created.id).status == OrderStatus.CANCELLED


def test_order_stock_flags_are_persisted(engine):
    store = SqlOrderStore(engine)
    created = Order(
        user_id="u1",
        amount=1250,
        products=[
            OrderLineItem(product_id="p1", seller_id="s1", quantity=2, price=500),
            OrderLineItem(product_id="p2", seller_id="s2", quantity=1, price=250),
        ],
        transaction_id="251018-120000-AAAAA",
    )
    store.create(created)

    store.mark_stock_decremented(created.id, ["p1"])

    loaded = store.get(created.id)
    assert [(item.product_id, item.stock_decremented) for item in loaded.products] == [("p1", True), ("p2", False)]
    with pytest.raises(NotFound):
        store.mark_stock_decremented("missing", ["p1"])


def test_redis_cart_store_deletes_cart_key():
    class FakeRedis:
        def __init__(self):
            self.deleted = []

        def delete(self, key):
            self.deleted.append(key)

    client = FakeRedis()
    RedisCartStore(client).clear("u1")
    assert client.deleted == ["cart:u1"]


def test_checkout_end_to_end_on_sql_stores(engine, sql_catalog, settings, gateway):
    payments = SqlPaymentStore(engine)
    orders = SqlOrderStore(engine)
    orchestrator = SettlementOrchestrator(
        settings=settings,
        catalog=sql_catalog,
        payments=payments,
        orders=orders,
        carts=InMemoryCartStore(),
        gateway=gateway,
        id_generator=lambda: "251018-120000-SQL01",
    )

    orchestrator.initiate("u1", [CartLineItem(id="p1", sellerId="s1", quantity=2, price=500)])
    first = orchestrator.settle("251018-120000-SQL01")
    second = orchestrator.settle("251018-120000-SQL01")

    assert first.id == second.id
    assert payments.get_by_transaction("251018-120000-SQL01").status == PaymentStatus.SUCCESS
    assert sql_catalog.get_product("p1").stock == 8

    orchestrator.cancel("u1", first.id)
    assert orders.get(first.id).status == OrderStatus.CANCELLED
    assert sql_catalog.get_product("p1").stock == 10
