"""
workflow.py — Checkout and Settlement Orchestration

This module contains the state machine that turns a cart into a paid order.
It coordinates the catalog, the payment and order stores, the gateway client
and the stock adjuster in the correct sequence.

Workflow Overview:
1. Initiate: validate cart → price → transaction uuid → sign → persist pending payment → gateway redirect
2. CheckStatus: ask the gateway about a transaction (read-only)
3. Settle: pending → success (compare-and-swap), create order, decrease stock, clear cart
4. Fail: pending → failed
5. Cancel: created order → cancelled, restore stock
6. Reconcile: poll the gateway for a stored payment and settle or fail it

Order creation is the commit point. Anything after it (stock, cart) is a
side effect that is logged on failure and never rolled back: the money has
already moved at the gateway.
"""

import logging
from typing import Dict, List, Optional, Tuple

from .availability import AvailabilityChecker
from .clients import GatewayClient
from .config import Settings
from .errors import CheckoutError, DuplicateOrder, InvalidInput, InvalidState, NotFound
from .models import (
    CartLineItem,
    GatewayPayload,
    Order,
    OrderLineItem,
    OrderStatus,
    PaymentItem,
    PaymentRecord,
    PaymentStatus,
    StatusResponse,
)
from .signing import sign
from .stock import StockAdjuster
from .stores import CartStore, Catalog, OrderStore, PaymentStore
from .transaction_ids import generate_transaction_uuid, is_valid_transaction_uuid

log = logging.getLogger(__name__)

# The gateway refuses totals below one unit.
MINIMUM_TOTAL = 1

GATEWAY_COMPLETE = "COMPLETE"
GATEWAY_FAILED = ("NOT_FOUND", "CANCELED")


class SettlementOrchestrator:
    """
    Runs checkout initiation, settlement and cancellation.

    All collaborators are injected; the orchestrator holds no global state and
    is safe to share between request workers.
    """

    def __init__(
        self,
        settings: Settings,
        catalog: Catalog,
        payments: PaymentStore,
        orders: OrderStore,
        carts: CartStore,
        gateway: GatewayClient,
        id_generator=generate_transaction_uuid,
    ):
        self.settings = settings
        self.catalog = catalog
        self.payments = payments
        self.orders = orders
        self.carts = carts
        self.gateway = gateway
        self.availability = AvailabilityChecker(catalog)
        self.stock = StockAdjuster(catalog)
        self.id_generator = id_generator

    # --- 1. Initiate ---

    def initiate(self, user_id: str, cart_items: List[CartLineItem]) -> str:
        """
        Starts a payment attempt for a cart.

        Args:
            user_id (str): The buyer.
            cart_items (list[CartLineItem]): Lines as submitted by the storefront.

        Returns:
            str: URL the storefront redirects the buyer to.

        Raises:
            InvalidInput / InsufficientStock: The cart failed validation; nothing was persisted.
            ConfigurationError: The signing key is unusable; nothing was persisted.
            GatewayError: The gateway rejected the form; the pending payment stays behind.
        """
        if not user_id:
            raise InvalidInput("user id is required")

        lines, _ = self.availability.validate_cart(cart_items)
        amount = sum(line.unit_price * line.quantity for line in lines)

        tax_amount = service_charge = delivery_charge = 0
        total_amount = max(amount + tax_amount + service_charge + delivery_charge, MINIMUM_TOTAL)

        transaction_uuid = self.id_generator()
        log_prefix = f"[Txn: {transaction_uuid}]"
        product_code = self.settings.merchant_code

        signature = sign(str(total_amount), transaction_uuid, product_code, self.settings.secret_key)
        payload = GatewayPayload(
            amount=str(amount),
            tax_amount=str(tax_amount),
            product_service_charge=str(service_charge),
            product_delivery_charge=str(delivery_charge),
            total_amount=str(total_amount),
            transaction_uuid=transaction_uuid,
            product_code=product_code,
            success_url=self.settings.success_url,
            failure_url=self.settings.failure_url,
            signature=signature,
        )

        record = PaymentRecord(
            amount=total_amount,
            user_id=user_id,
            transaction_uuid=transaction_uuid,
            items=[PaymentItem(product_id=line.product_id, quantity=line.quantity) for line in lines],
        )
        self.payments.create(record)
        log.info(f"{log_prefix} Zahlung angelegt (pending): Nutzer={user_id}, Betrag={total_amount}.")

        url = self.gateway.initiate(payload)
        log.info(f"{log_prefix} Weiterleitung zum Gateway bereit.")
        return url

    # --- 2. CheckStatus ---

    def check_status(self, transaction_uuid: str, product_code: str, total_amount: str) -> StatusResponse:
        """Returns the gateway's view of a transaction. Does not change any state."""
        if not transaction_uuid or not product_code or not total_amount:
            raise InvalidInput("transaction_uuid, product_code, and total_amount are required")
        return self.gateway.check_status(transaction_uuid, product_code, total_amount)

    # --- 3. Settle ---

    def settle(self, transaction_uuid: str) -> Order:
        """
        Converts a confirmed payment into an order.

        Safe to call repeatedly for the same transaction: the pending → success
        swap succeeds once, and the unique transaction id on orders lets only
        one caller create the order. Every other call returns the existing
        order without touching stock.

        Raises:
            NotFound: Unknown transaction uuid.
            InvalidState: The payment failed or was refunded.
        """
        log_prefix = f"[Txn: {transaction_uuid}]"
        if not is_valid_transaction_uuid(transaction_uuid):
            raise InvalidInput("invalid transaction_uuid")

        payment = self.payments.get_by_transaction(transaction_uuid)
        if payment is None:
            raise NotFound(f"payment with transaction uuid {transaction_uuid} not found")

        if payment.status == PaymentStatus.PENDING:
            if self.payments.transition(transaction_uuid, PaymentStatus.PENDING, PaymentStatus.SUCCESS):
                log.info(f"{log_prefix} Zahlung als erfolgreich markiert.")
            else:
                payment = self.payments.get_by_transaction(transaction_uuid)

        if payment.status in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
            raise InvalidState(f"payment {transaction_uuid} is {payment.status.value} and cannot be settled")

        existing = self.orders.get_by_transaction(transaction_uuid)
        if existing is not None:
            log.warning(f"{log_prefix} Bereits abgerechnet (Order: {existing.id}). Keine weiteren Änderungen.")
            return existing

        order = self._build_order(payment)
        try:
            self.orders.create(order)
        except DuplicateOrder:
            log.warning(f"{log_prefix} Order wurde parallel angelegt. Keine weiteren Änderungen.")
            return self.orders.get_by_transaction(transaction_uuid)
        log.info(f"{log_prefix} Order {order.id} angelegt (Betrag: {order.amount}).")

        # Commit point passed: from here on nothing fails the settlement.
        adjusted = self.stock.decrease(order.products, log_prefix)
        order = self._record_decrements(order, adjusted, log_prefix)
        self._clear_cart(payment.user_id, log_prefix)

        return order

    def _record_decrements(self, order: Order, adjusted: Dict[str, Optional[int]], log_prefix: str) -> Order:
        taken = [product_id for product_id, new_stock in adjusted.items() if new_stock is not None]
        try:
            self.orders.mark_stock_decremented(order.id, taken)
            return self.orders.get(order.id) or order
        except CheckoutError as e:
            # Unflagged lines are not restored on cancel.
            log.error(f"{log_prefix} Lagerabzug für Order {order.id} konnte nicht vermerkt werden: {e.message}")
            return order

    def _build_order(self, payment: PaymentRecord) -> Order:
        if not payment.items:
            raise InvalidState(f"payment {payment.transaction_uuid} has no products")

        products = {p.id: p for p in self.catalog.get_products(payment.product_ids)}
        lines = []
        for item in payment.items:
            product = products.get(item.product_id)
            if product is None:
                raise NotFound(f"product {item.product_id} not found")
            # Snapshot seller and price so later catalog edits do not rewrite history.
            lines.append(
                OrderLineItem(
                    product_id=product.id,
                    seller_id=product.seller_id,
                    quantity=item.quantity,
                    price=product.price,
                )
            )

        return Order(
            user_id=payment.user_id,
            amount=payment.amount,
            products=lines,
            transaction_id=payment.transaction_uuid,
        )

    def _clear_cart(self, user_id: str, log_prefix: str):
        try:
            self.carts.clear(user_id)
            log.info(f"{log_prefix} Warenkorb von Nutzer {user_id} geleert.")
        except Exception as e:
            log.warning(f"{log_prefix} Warenkorb von Nutzer {user_id} konnte nicht geleert werden: {e}")

    # --- 4. Fail ---

    def fail(self, transaction_uuid: str, user_id: Optional[str] = None) -> PaymentStatus:
        """
        Marks a pending payment as failed (gateway reported failure or the buyer aborted).

        Idempotent for already failed payments. When `user_id` is given, only
        the buyer who started the payment may fail it.

        Raises:
            NotFound: Unknown transaction uuid, or the payment belongs to another user.
            InvalidState: The payment already succeeded or was refunded.
        """
        log_prefix = f"[Txn: {transaction_uuid}]"
        payment = self.payments.get_by_transaction(transaction_uuid)
        if payment is None or (user_id is not None and payment.user_id != user_id):
            raise NotFound(f"payment with transaction uuid {transaction_uuid} not found")

        if payment.status == PaymentStatus.PENDING and self.payments.transition(
            transaction_uuid, PaymentStatus.PENDING, PaymentStatus.FAILED
        ):
            log.info(f"{log_prefix} Zahlung als fehlgeschlagen markiert.")
            return PaymentStatus.FAILED

        current = self.payments.get_by_transaction(transaction_uuid).status
        if current != PaymentStatus.FAILED:
            raise InvalidState(f"payment {transaction_uuid} is {current.value} and cannot be marked failed")
        return current

    # --- Poll-driven settlement ---

    def reconcile(self, transaction_uuid: str) -> Tuple[StatusResponse, Optional[Order]]:
        """
        Asks the gateway about a stored payment and acts on the answer:
        COMPLETE settles it, a terminal failure marks it failed, anything else
        leaves it pending.
        """
        payment = self.payments.get_by_transaction(transaction_uuid)
        if payment is None:
            raise NotFound(f"payment with transaction uuid {transaction_uuid} not found")

        status = self.gateway.check_status(transaction_uuid, self.settings.merchant_code, str(payment.amount))
        log.info(f"[Txn: {transaction_uuid}] Gateway-Status: {status.status}.")

        if status.status == GATEWAY_COMPLETE:
            return status, self.settle(transaction_uuid)
        if status.status in GATEWAY_FAILED and payment.status == PaymentStatus.PENDING:
            self.fail(transaction_uuid)
        return status, None

    # --- 5. Cancel ---

    def cancel(self, user_id: str, order_id: str) -> Order:
        """
        Cancels a user's order while it is still `created` and restores the stock settlement took.

        Raises:
            NotFound: Unknown order, or the order belongs to another user.
            InvalidState: The order has moved past `created`.
        """
        log_prefix = f"[Order: {order_id}]"
        order = self.orders.get(order_id)
        if order is None or order.user_id != user_id:
            raise NotFound(f"order {order_id} not found")

        if order.status != OrderStatus.CREATED:
            raise InvalidState(f"order cannot be cancelled in current status: {order.status.value}")

        if not self.orders.transition(order_id, OrderStatus.CREATED, OrderStatus.CANCELLED):
            current: Optional[Order] = self.orders.get(order_id)
            status = current.status.value if current else "unknown"
            raise InvalidState(f"order cannot be cancelled in current status: {status}")
        log.info(f"{log_prefix} Order storniert. Stelle abgebuchten Lagerbestand wieder her.")

        taken = [item for item in order.products if item.stock_decremented]
        self.stock.restore(taken, log_prefix)
        return self.orders.get(order_id)
