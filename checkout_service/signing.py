"""
signing.py — Request signing for the eSewa gateway

The gateway authenticates a payment form by an HMAC-SHA256 over a canonical
string built from three fields, in a fixed order:

    total_amount=<v>,transaction_uuid=<v>,product_code=<v>

The digest is sent base64 (standard alphabet) in the `signature` field.
"""

import base64
import hashlib
import hmac

from .errors import ConfigurationError


def canonical_string(total_amount: str, transaction_uuid: str, product_code: str) -> str:
    return f"total_amount={total_amount},transaction_uuid={transaction_uuid},product_code={product_code}"


def sign(total_amount: str, transaction_uuid: str, product_code: str, secret_key: str) -> str:
    """
    Computes the gateway signature.

    Raises:
        ConfigurationError: If the secret key is empty.
    """
    if not secret_key:
        raise ConfigurationError("ESEWA_SECRET_KEY is required to sign gateway requests")
    message = canonical_string(total_amount, transaction_uuid, product_code)
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(total_amount: str, transaction_uuid: str, product_code: str, secret_key: str, signature: str) -> bool:
    """Constant-time check of a signature against the three signed fields."""
    if not signature:
        return False
    expected = sign(total_amount, transaction_uuid, product_code, secret_key)
    return hmac.compare_digest(expected, signature)
