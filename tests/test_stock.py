"""Tests for stock adjustments after settlement and cancellation."""
from checkout_service.models import OrderLineItem
from checkout_service.stock import StockAdjuster


def item(pid, seller, qty):
    return OrderLineItem(product_id=pid, seller_id=seller, quantity=qty, price=0)


def test_adjust_applies_delta(catalog):
    adjuster = StockAdjuster(catalog)
    assert adjuster.adjust("p1", "s1", -4) == 6
    assert adjuster.adjust("p1", "s1", 4) == 10
    assert catalog.get_product("p1").stock == 10


def test_adjust_skips_insufficient_stock(catalog, caplog):
    adjuster = StockAdjuster(catalog)
    assert adjuster.adjust("p2", "s2", -5) is None
    assert catalog.get_product("p2").stock == 3
    assert any(r.levelname == "WARNING" for r in caplog.records)


def test_adjust_unknown_product_does_not_raise(catalog):
    assert StockAdjuster(catalog).adjust("ghost", "s1", -1) is None


def test_decrease_continues_after_a_failed_item(catalog):
    result = StockAdjuster(catalog).decrease([item("p2", "s2", 9), item("p1", "s1", 2)])
    assert result == {"p2": None, "p1": 8}


def test_restore_returns_stock(catalog):
    adjuster = StockAdjuster(catalog)
    adjuster.decrease([item("p1", "s1", 3)])
    adjuster.restore([item("p1", "s1", 3)])
    assert catalog.get_product("p1").stock == 10
