"""
availability.py — Cart validation before a payment attempt

Runs before anything is persisted: every cart line must reference an existing,
in-stock product whose catalog price and seller match what the storefront
submitted.
"""

import logging
from typing import Dict, Iterable, List, Tuple

from .errors import InsufficientStock, InvalidInput
from .models import CartLineItem, Product
from .stores import Catalog

log = logging.getLogger(__name__)


def merge_line_items(items: Iterable[CartLineItem]) -> List[CartLineItem]:
    """Collapses repeated product ids into one line, summing quantities. Keeps first-seen order."""
    merged: Dict[str, CartLineItem] = {}
    for item in items:
        current = merged.get(item.product_id)
        if current is None:
            merged[item.product_id] = item.model_copy()
            continue
        if current.unit_price != item.unit_price or current.seller_id != item.seller_id:
            raise InvalidInput(f"conflicting cart lines for product {item.product_id}")
        current.quantity += item.quantity
    return list(merged.values())


class AvailabilityChecker:
    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def check_availability(self, product_ids: Iterable[str]) -> Tuple[List[Product], bool]:
        """
        Looks up all ids in one batched read.

        Returns:
            (products, all_available): the products found, and whether every
            requested id was found with stock left.

        Raises:
            InvalidInput: If no ids were given.
        """
        requested = set(product_ids)
        if not requested:
            raise InvalidInput("product ids cannot be empty")

        products = self.catalog.get_products(requested)
        found = {p.id for p in products}
        missing = requested - found
        if missing:
            log.warning(f"Produkte nicht gefunden: {sorted(missing)}")
        all_available = not missing and all(p.stock > 0 for p in products)
        return products, all_available

    def validate_cart(self, items: List[CartLineItem]) -> Tuple[List[CartLineItem], Dict[str, Product]]:
        """
        Validates a cart against the catalog.

        Returns:
            The merged cart lines and the catalog products keyed by id.

        Raises:
            InvalidInput: Empty cart, unknown products, price or seller mismatch.
            InsufficientStock: A line asks for more than the current stock.
        """
        if not items:
            raise InvalidInput("cart is empty")
        lines = merge_line_items(items)

        products, _ = self.check_availability(line.product_id for line in lines)
        by_id = {p.id: p for p in products}

        missing = [line.product_id for line in lines if line.product_id not in by_id]
        if missing:
            raise InvalidInput(f"products not available: {', '.join(missing)}")

        for line in lines:
            product = by_id[line.product_id]
            if line.unit_price != product.price:
                raise InvalidInput(
                    f"price of product {line.product_id} changed: cart={line.unit_price}, catalog={product.price}"
                )
            if line.seller_id and line.seller_id != product.seller_id:
                raise InvalidInput(f"seller mismatch for product {line.product_id}")
            if product.stock < line.quantity:
                raise InsufficientStock(line.product_id, product.stock, line.quantity)

        return lines, by_id
