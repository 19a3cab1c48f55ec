"""
stock.py — Stock adjustments after the order commit point

Adjustments are signed deltas applied by the catalog as one conditional
update. They never fail the caller: by the time stock moves, the payment has
been settled (or the order cancelled), so problems are logged and the
remaining items are still processed.
"""

import logging
from typing import Dict, Iterable, Optional

from .errors import CheckoutError, InsufficientStock
from .models import OrderLineItem
from .stores import Catalog

log = logging.getLogger(__name__)


class StockAdjuster:
    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    def adjust(self, product_id: str, seller_id: str, delta: int, log_prefix: str = "") -> Optional[int]:
        """
        Applies `stock += delta` to one product.

        Returns:
            The new stock, or None if the adjustment was skipped.
        """
        try:
            new_stock = self.catalog.adjust_stock(product_id, delta)
        except InsufficientStock as e:
            log.warning(
                f"{log_prefix} Lagerbestand unzureichend für Produkt {product_id} (Verkäufer {seller_id}): "
                f"verfügbar={e.available}, benötigt={e.requested}. Übersprungen."
            )
            return None
        except CheckoutError as e:
            log.warning(f"{log_prefix} Lageranpassung für Produkt {product_id} fehlgeschlagen: {e.message}")
            return None
        log.info(f"{log_prefix} Lagerbestand von {product_id} um {delta:+d} angepasst (neu: {new_stock}).")
        return new_stock

    def decrease(self, items: Iterable[OrderLineItem], log_prefix: str = "") -> Dict[str, Optional[int]]:
        return {
            item.product_id: self.adjust(item.product_id, item.seller_id, -item.quantity, log_prefix)
            for item in items
        }

    def restore(self, items: Iterable[OrderLineItem], log_prefix: str = "") -> Dict[str, Optional[int]]:
        return {
            item.product_id: self.adjust(item.product_id, item.seller_id, item.quantity, log_prefix)
            for item in items
        }
