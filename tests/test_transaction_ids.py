"""Tests for gateway transaction id generation."""
import re
from datetime import datetime, timezone

from checkout_service.transaction_ids import generate_transaction_uuid, is_valid_transaction_uuid


def test_shape_and_timestamp():
    now = datetime(2025, 10, 18, 9, 5, 7, tzinfo=timezone.utc)
    value = generate_transaction_uuid(now)
    assert re.fullmatch(r"251018-090507-[A-Z0-9]{5}", value)


def test_only_gateway_safe_characters():
    for _ in range(50):
        assert is_valid_transaction_uuid(generate_transaction_uuid())


def test_ids_do_not_collide_within_one_second():
    now = datetime(2025, 10, 18, 9, 5, 7, tzinfo=timezone.utc)
    ids = {generate_transaction_uuid(now) for _ in range(200)}
    # 36^5 suffixes; a collision among 200 draws is vanishingly unlikely.
    assert len(ids) >= 199


def test_rejects_foreign_characters():
    assert not is_valid_transaction_uuid("")
    assert not is_valid_transaction_uuid("abc_123")
    assert not is_valid_transaction_uuid("abc 123")
