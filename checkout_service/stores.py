"""
stores.py — Collaborator interfaces of the checkout pipeline

The pipeline talks to four stores through narrow protocols:

    Catalog       batched product reads and atomic stock deltas
    PaymentStore  payment records with compare-and-swap status changes
    OrderStore    orders, unique per transaction id
    CartStore     cart cleanup after settlement

The in-memory implementations below hold the same guarantees as the
SQLAlchemy ones in `db.py` (conditional updates under a lock) and back the
test suite and local runs.
"""

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Set

from .errors import DuplicateOrder, InsufficientStock, InvalidState, NotFound, PersistenceError
from .models import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    Order,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
    Product,
    can_transition,
    utcnow,
)


class Catalog(Protocol):
    def get_products(self, product_ids: Iterable[str]) -> List[Product]: ...

    def get_product(self, product_id: str) -> Optional[Product]: ...

    def adjust_stock(self, product_id: str, delta: int) -> int:
        """Applies `stock += delta` atomically; never lets stock go negative."""
        ...


class PaymentStore(Protocol):
    def create(self, record: PaymentRecord) -> None: ...

    def get_by_transaction(self, transaction_uuid: str) -> Optional[PaymentRecord]: ...

    def transition(self, transaction_uuid: str, expected: PaymentStatus, new: PaymentStatus) -> bool:
        """Sets `new` only if the current status is `expected`. Returns whether it did."""
        ...


class OrderStore(Protocol):
    def create(self, order: Order) -> None: ...

    def get(self, order_id: str) -> Optional[Order]: ...

    def get_by_transaction(self, transaction_id: str) -> Optional[Order]: ...

    def transition(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool: ...

    def mark_stock_decremented(self, order_id: str, product_ids: Iterable[str]) -> None:
        """Flags the order lines whose stock decrement was applied."""
        ...


class CartStore(Protocol):
    def clear(self, user_id: str) -> None: ...


def check_payment_transition(expected: PaymentStatus, new: PaymentStatus) -> None:
    if not can_transition(PAYMENT_TRANSITIONS, expected, new):
        raise InvalidState(f"payment cannot move from {expected.value} to {new.value}")


def check_order_transition(expected: OrderStatus, new: OrderStatus) -> None:
    if not can_transition(ORDER_TRANSITIONS, expected, new):
        raise InvalidState(f"order cannot move from {expected.value} to {new.value}")


class InMemoryCatalog:
    def __init__(self, products: Iterable[Product] = ()):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {p.id: p.model_copy() for p in products}

    def add_product(self, product_id: str, seller_id: str, price: int, stock: int, name: str = "") -> Product:
        product = Product(id=product_id, seller_id=seller_id, price=price, stock=stock, name=name)
        with self._lock:
            self._products[product_id] = product
        return product.model_copy()

    def get_products(self, product_ids: Iterable[str]) -> List[Product]:
        with self._lock:
            return [self._products[pid].model_copy() for pid in dict.fromkeys(product_ids) if pid in self._products]

    def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return product.model_copy() if product else None

    def adjust_stock(self, product_id: str, delta: int) -> int:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise NotFound(f"product {product_id} not found")
            if product.stock + delta < 0:
                raise InsufficientStock(product_id, product.stock, -delta)
            product.stock += delta
            return product.stock


class InMemoryPaymentStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, PaymentRecord] = {}

    def create(self, record: PaymentRecord) -> None:
        with self._lock:
            if record.transaction_uuid in self._records:
                raise PersistenceError(f"payment for transaction {record.transaction_uuid} already exists")
            self._records[record.transaction_uuid] = record.model_copy(deep=True)

    def get_by_transaction(self, transaction_uuid: str) -> Optional[PaymentRecord]:
        with self._lock:
            record = self._records.get(transaction_uuid)
            return record.model_copy(deep=True) if record else None

    def transition(self, transaction_uuid: str, expected: PaymentStatus, new: PaymentStatus) -> bool:
        check_payment_transition(expected, new)
        with self._lock:
            record = self._records.get(transaction_uuid)
            if record is None or record.status != expected:
                return False
            record.status = new
            record.updated_at = utcnow()
            return True

    def __len__(self):
        return len(self._records)


class InMemoryOrderStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._by_transaction: Dict[str, str] = {}

    def create(self, order: Order) -> None:
        with self._lock:
            if order.transaction_id in self._by_transaction:
                raise DuplicateOrder(order.transaction_id)
            self._orders[order.id] = order.model_copy(deep=True)
            self._by_transaction[order.transaction_id] = order.id

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def get_by_transaction(self, transaction_id: str) -> Optional[Order]:
        with self._lock:
            order_id = self._by_transaction.get(transaction_id)
            return self._orders[order_id].model_copy(deep=True) if order_id else None

    def transition(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
        check_order_transition(expected, new)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != expected:
                return False
            order.status = new
            order.updated_at = utcnow()
            return True

    def mark_stock_decremented(self, order_id: str, product_ids: Iterable[str]) -> None:
        applied = set(product_ids)
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise NotFound(f"order {order_id} not found")
            for item in order.products:
                item.stock_decremented = item.product_id in applied
            order.updated_at = utcnow()

    def __len__(self):
        return len(self._orders)


class InMemoryCartStore:
    def __init__(self):
        self.carts: Dict[str, Set[str]] = {}

    def clear(self, user_id: str) -> None:
        self.carts.pop(user_id, None)
