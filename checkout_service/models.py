"""
models.py — Data Models for the Checkout Pipeline

This module defines the data structures used across checkout, settlement and
cancellation. It uses Pydantic models for validation of incoming data and for
the JSON shape of everything returned to the storefront.

Models:
    - CartLineItem / CheckoutRequest: client-submitted cart (ephemeral, never persisted).
    - Product: the slice of the catalog entity the pipeline reads (stock is the only field it writes).
    - PaymentRecord: one checkout attempt, keyed by the gateway-facing transaction uuid.
    - Order / OrderLineItem: the order materialized from a settled payment.
    - GatewayPayload / StatusResponse: the gateway wire formats.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


# Only forward transitions; everything else is rejected by the stores.
PAYMENT_TRANSITIONS: Dict[PaymentStatus, Tuple[PaymentStatus, ...]] = {
    PaymentStatus.PENDING: (PaymentStatus.SUCCESS, PaymentStatus.FAILED),
    PaymentStatus.SUCCESS: (PaymentStatus.REFUNDED,),
    PaymentStatus.FAILED: (),
    PaymentStatus.REFUNDED: (),
}


class OrderStatus(str, Enum):
    CREATED = "created"
    PAID_AND_PROCESSING = "paid and processing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


ORDER_TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.CREATED: (OrderStatus.PAID_AND_PROCESSING, OrderStatus.CANCELLED),
    OrderStatus.PAID_AND_PROCESSING: (OrderStatus.SHIPPING,),
    OrderStatus.SHIPPING: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}


def can_transition(transitions: dict, current, new) -> bool:
    return new in transitions.get(current, ())


class CamelModel(BaseModel):
    """Base for models exchanged with the storefront (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CartLineItem(CamelModel):
    """
    A single cart entry as submitted by the storefront.

    Attributes:
        product_id (str): Catalog id of the product (`id` on the wire).
        seller_id (str): Seller owning the product.
        quantity (int): Ordered quantity. Must be greater than zero.
        unit_price (int): Price per unit in minor units (`price` on the wire).
        name (str): Display name, informational only.
    """
    product_id: str = Field(..., alias="id", min_length=1)
    seller_id: str = ""
    quantity: int = Field(..., gt=0)
    unit_price: int = Field(..., alias="price", ge=0)
    name: str = ""


class CheckoutRequest(CamelModel):
    cart_items: List[CartLineItem]


class TransactionRequest(BaseModel):
    transaction_uuid: str = Field(..., min_length=1)


class Product(CamelModel):
    id: str
    seller_id: str
    name: str = ""
    price: int
    stock: int
    rating: int = 0
    rating_count: int = 0


class PaymentItem(CamelModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class PaymentRecord(CamelModel):
    """
    One checkout attempt.

    Created once in `pending`; `transaction_uuid` is the idempotency key of
    settlement. `items` keeps the ordered quantity per product so settlement
    decrements stock by what was actually paid for.
    """
    id: str = Field(default_factory=new_id)
    amount: int
    user_id: str
    transaction_uuid: str
    items: List[PaymentItem]
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def product_ids(self) -> List[str]:
        return [item.product_id for item in self.items]


class OrderLineItem(CamelModel):
    """
    One product of an order, with seller and price snapshotted at settlement.

    `stock_decremented` records whether settlement actually took `quantity`
    from stock; cancellation gives back only what was taken.
    """
    product_id: str
    seller_id: str
    quantity: int
    price: int
    stock_decremented: bool = False


class Order(CamelModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    amount: int
    products: List[OrderLineItem]
    transaction_id: str
    status: OrderStatus = OrderStatus.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Wire order of the gateway form; the gateway rejects permutations.
GATEWAY_FORM_FIELDS = (
    "amount",
    "tax_amount",
    "product_service_charge",
    "product_delivery_charge",
    "total_amount",
    "transaction_uuid",
    "product_code",
    "success_url",
    "failure_url",
    "signed_field_names",
    "signature",
)

SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"


class GatewayPayload(BaseModel):
    """Signed form submitted to the gateway. All values are strings on the wire."""
    amount: str
    tax_amount: str = "0"
    product_service_charge: str = "0"
    product_delivery_charge: str = "0"
    total_amount: str
    transaction_uuid: str
    product_code: str
    success_url: str
    failure_url: str
    signed_field_names: str = SIGNED_FIELD_NAMES
    signature: str

    def form_fields(self) -> List[Tuple[str, str]]:
        return [(name, getattr(self, name)) for name in GATEWAY_FORM_FIELDS]


class StatusResponse(BaseModel):
    """Response of the gateway status-check endpoint."""
    product_code: str
    transaction_uuid: str
    total_amount: float
    status: str
    ref_id: Optional[str] = None
