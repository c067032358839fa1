"""
Canonical Entities

Source-agnostic customer, product, order and order item records. The
normalizer produces them from raw platform payloads; the repository
returns them with their store-assigned ids filled in.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class Customer(BaseModel):
    """Canonical customer, unique by (source_id, source_type)"""
    id: Optional[int] = None
    source_id: str
    source_type: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    total_spent: float = 0.0
    orders_count: int = 0
    tags: List[str] = Field(default_factory=list)
    first_purchase_date: Optional[datetime] = None
    last_purchase_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Product(BaseModel):
    """Canonical product, unique by (source_id, source_type)"""
    id: Optional[int] = None
    source_id: str
    source_type: str
    title: str
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    sku: Optional[str] = None
    price: float = 0.0
    compare_at_price: Optional[float] = None
    inventory_quantity: int = 0
    tags: List[str] = Field(default_factory=list)
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderItem(BaseModel):
    """Canonical order line item; belongs to exactly one order"""
    id: Optional[int] = None
    order_id: Optional[int] = None
    product_id: Optional[int] = None
    source_type: str
    source_order_id: Optional[str] = None
    source_product_id: Optional[str] = None
    source_variant_id: Optional[str] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 1
    price: float = 0.0
    total_discount: float = 0.0
    fulfillment_status: Optional[str] = None


class Order(BaseModel):
    """
    Canonical order.

    ``processed_at`` is the timestamp used for every date-bucketed
    calculation. ``customer_id`` stays empty until the order is linked to
    a stored customer by email.
    """
    id: Optional[int] = None
    customer_id: Optional[int] = None
    source_id: str
    source_type: str
    order_number: Optional[str] = None
    email: Optional[str] = None
    financial_status: str = "pending"
    fulfillment_status: Optional[str] = None
    currency: str = "USD"
    subtotal: float = 0.0
    tax: float = 0.0
    discounts: float = 0.0
    shipping: float = 0.0
    total: Optional[float] = 0.0
    processed_at: datetime
    cancelled_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    source_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    line_items: List[OrderItem] = Field(default_factory=list)
