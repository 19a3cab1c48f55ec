"""
errors.py — Error taxonomy of the checkout pipeline

Every failure the pipeline surfaces to a caller is a CheckoutError. The HTTP
layer maps `status_code` onto the response and puts `message` into the
`{"success": false, "error": ...}` envelope.
"""


class CheckoutError(Exception):
    """Base class for all checkout pipeline failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(CheckoutError):
    """Required configuration is missing or unusable (e.g. empty signing key)."""


class InvalidInput(CheckoutError):
    """Empty cart, unknown product ids, mismatched prices."""
    status_code = 400


class NotFound(CheckoutError):
    """Unknown transaction uuid, order or product."""
    status_code = 404


class InvalidState(CheckoutError):
    """The entity is not in a state that allows the requested transition."""
    status_code = 409


class InsufficientStock(CheckoutError):
    """Requested quantity exceeds the available stock of a product."""
    status_code = 409

    def __init__(self, product_id: str, available: int, requested: int):
        super().__init__(
            f"insufficient stock for product {product_id}: available={available}, requested={requested}"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class GatewayError(CheckoutError):
    """The payment gateway could not be reached or returned an unusable response."""
    status_code = 502

    def __init__(self, message: str, gateway_status: int = None, body: str = ""):
        super().__init__(message)
        self.gateway_status = gateway_status
        self.body = body


class PersistenceError(CheckoutError):
    """A store write or read failed."""


class DuplicateOrder(PersistenceError):
    """An order already exists for the transaction id (unique constraint)."""
    status_code = 409

    def __init__(self, transaction_id: str):
        super().__init__(f"order for transaction {transaction_id} already exists")
        self.transaction_id = transaction_id


class Unauthorized(CheckoutError):
    """The request carries no caller identity."""
    status_code = 401
