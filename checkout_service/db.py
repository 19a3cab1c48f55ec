"""
db.py — SQLAlchemy and Redis implementations of the pipeline's stores

Every state change is a single conditional UPDATE, so concurrent workers
never lose updates:

    stock:    UPDATE products SET stock = stock + :delta WHERE id = :id AND stock + :delta >= 0
    payment:  UPDATE payments SET status = :new WHERE transaction_uuid = :t AND status = :expected
    order:    UPDATE orders   SET status = :new WHERE id = :id AND status = :expected

`orders.transaction_id` is unique; a second insert for the same transaction
surfaces as DuplicateOrder.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import JSON, BigInteger, DateTime, Integer, String, create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .errors import DuplicateOrder, InsufficientStock, NotFound, PersistenceError
from .models import Order, OrderLineItem, OrderStatus, PaymentItem, PaymentRecord, PaymentStatus, Product, utcnow
from .stores import check_order_transition, check_payment_transition

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class ProductRow(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    seller_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    price: Mapped[int] = mapped_column(BigInteger)
    stock: Mapped[int] = mapped_column(Integer, default=0)
    rating: Mapped[int] = mapped_column(Integer, default=0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PaymentRow(Base):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    amount: Mapped[int] = mapped_column(BigInteger)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    transaction_uuid: Mapped[str] = mapped_column(String(64), unique=True)
    items: Mapped[list] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    amount: Mapped[int] = mapped_column(BigInteger)
    products: Mapped[list] = mapped_column(JSON)
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True)
    status: Mapped[str] = mapped_column(String(32), default=OrderStatus.CREATED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


def make_engine(database_url: str, **kwargs) -> Engine:
    return create_engine(database_url, future=True, **kwargs)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def _product(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        seller_id=row.seller_id,
        name=row.name,
        price=row.price,
        stock=row.stock,
        rating=row.rating,
        rating_count=row.rating_count,
    )


def _payment(row: PaymentRow) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        amount=row.amount,
        user_id=row.user_id,
        transaction_uuid=row.transaction_uuid,
        items=[PaymentItem.model_validate(item) for item in row.items],
        status=PaymentStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        amount=row.amount,
        products=[OrderLineItem.model_validate(item) for item in row.products],
        transaction_id=row.transaction_id,
        status=OrderStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlStore:
    """Shared session handling; wraps driver errors as PersistenceError."""

    def __init__(self, engine: Engine):
        self.sessions = sessionmaker(engine, expire_on_commit=False)

    def _fail(self, action: str, e: Exception):
        log.error(f"Datenbankfehler bei '{action}': {e}")
        raise PersistenceError(f"failed to {action}") from e


class SqlCatalog(SqlStore):
    def add_product(self, product_id: str, seller_id: str, price: int, stock: int, name: str = "") -> Product:
        row = ProductRow(
            id=product_id, seller_id=seller_id, price=price, stock=stock, name=name, rating=0, rating_count=0
        )
        try:
            with self.sessions.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            self._fail(f"create product {product_id}", e)
        return _product(row)

    def get_products(self, product_ids: Iterable[str]) -> List[Product]:
        ids = list(dict.fromkeys(product_ids))
        try:
            with self.sessions() as session:
                rows = session.scalars(select(ProductRow).where(ProductRow.id.in_(ids))).all()
        except SQLAlchemyError as e:
            self._fail("read products", e)
        by_id = {row.id: _product(row) for row in rows}
        return [by_id[pid] for pid in ids if pid in by_id]

    def get_product(self, product_id: str) -> Optional[Product]:
        try:
            with self.sessions() as session:
                row = session.get(ProductRow, product_id)
                return _product(row) if row else None
        except SQLAlchemyError as e:
            self._fail(f"read product {product_id}", e)

    def adjust_stock(self, product_id: str, delta: int) -> int:
        try:
            with self.sessions.begin() as session:
                result = session.execute(
                    update(ProductRow)
                    .where(ProductRow.id == product_id, ProductRow.stock + delta >= 0)
                    .values(stock=ProductRow.stock + delta, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                stock = session.scalar(select(ProductRow.stock).where(ProductRow.id == product_id))
        except SQLAlchemyError as e:
            self._fail(f"adjust stock of {product_id}", e)

        if result.rowcount == 1:
            return stock
        if stock is None:
            raise NotFound(f"product {product_id} not found")
        raise InsufficientStock(product_id, stock, -delta)


class SqlPaymentStore(SqlStore):
    def create(self, record: PaymentRecord) -> None:
        row = PaymentRow(
            id=record.id,
            amount=record.amount,
            user_id=record.user_id,
            transaction_uuid=record.transaction_uuid,
            items=[item.model_dump() for item in record.items],
            status=record.status.value,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        try:
            with self.sessions.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            self._fail(f"create payment {record.transaction_uuid}", e)

    def get_by_transaction(self, transaction_uuid: str) -> Optional[PaymentRecord]:
        try:
            with self.sessions() as session:
                row = session.scalar(select(PaymentRow).where(PaymentRow.transaction_uuid == transaction_uuid))
                return _payment(row) if row else None
        except SQLAlchemyError as e:
            self._fail(f"read payment {transaction_uuid}", e)

    def transition(self, transaction_uuid: str, expected: PaymentStatus, new: PaymentStatus) -> bool:
        check_payment_transition(expected, new)
        try:
            with self.sessions.begin() as session:
                result = session.execute(
                    update(PaymentRow)
                    .where(PaymentRow.transaction_uuid == transaction_uuid, PaymentRow.status == expected.value)
                    .values(status=new.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            self._fail(f"update payment {transaction_uuid}", e)
        return result.rowcount == 1


class SqlOrderStore(SqlStore):
    def create(self, order: Order) -> None:
        row = OrderRow(
            id=order.id,
            user_id=order.user_id,
            amount=order.amount,
            products=[item.model_dump() for item in order.products],
            transaction_id=order.transaction_id,
            status=order.status.value,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
        try:
            with self.sessions.begin() as session:
                session.add(row)
        except IntegrityError as e:
            if self.get_by_transaction(order.transaction_id) is not None:
                raise DuplicateOrder(order.transaction_id) from e
            self._fail(f"create order {order.id}", e)
        except SQLAlchemyError as e:
            self._fail(f"create order {order.id}", e)

    def get(self, order_id: str) -> Optional[Order]:
        try:
            with self.sessions() as session:
                row = session.get(OrderRow, order_id)
                return _order(row) if row else None
        except SQLAlchemyError as e:
            self._fail(f"read order {order_id}", e)

    def get_by_transaction(self, transaction_id: str) -> Optional[Order]:
        try:
            with self.sessions() as session:
                row = session.scalar(select(OrderRow).where(OrderRow.transaction_id == transaction_id))
                return _order(row) if row else None
        except SQLAlchemyError as e:
            self._fail(f"read order for {transaction_id}", e)

    def transition(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
        check_order_transition(expected, new)
        try:
            with self.sessions.begin() as session:
                result = session.execute(
                    update(OrderRow)
                    .where(OrderRow.id == order_id, OrderRow.status == expected.value)
                    .values(status=new.value, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            self._fail(f"update order {order_id}", e)
        return result.rowcount == 1

    def mark_stock_decremented(self, order_id: str, product_ids: Iterable[str]) -> None:
        applied = set(product_ids)
        try:
            with self.sessions.begin() as session:
                row = session.get(OrderRow, order_id, with_for_update=True)
                if row is None:
                    raise NotFound(f"order {order_id} not found")
                # Reassign the JSON column so the change is flushed.
                row.products = [
                    {**item, "stock_decremented": item["product_id"] in applied} for item in row.products
                ]
                row.updated_at = utcnow()
        except SQLAlchemyError as e:
            self._fail(f"update stock flags of order {order_id}", e)


class RedisCartStore:
    """Carts live in Redis under `cart:<userId>`."""

    def __init__(self, client):
        self.client = client

    def clear(self, user_id: str) -> None:
        self.client.delete(f"cart:{user_id}")
