"""
Database Models

Relational schema of the analytics store:

Source Records (unique by source_id + source_type):
- CustomerRecord: Customers of every storefront
- ProductRecord: Product catalog
- OrderRecord: Orders, linked to customers by email
- OrderItemRecord: Order line items

Derived Tables:
- CustomerMetricsRecord: Per-customer metrics per calculation date
- DailyMetricsRecord: Daily aggregates per source
- ETLLogRecord: One row per orchestrator run
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _money(precision: int = 15, scale: int = 2) -> Numeric:
    return Numeric(precision, scale, asdecimal=False)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class CustomerRecord(Base):
    """Customers table"""
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    email: Mapped[Optional[str]] = mapped_column(String(255))
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(50))

    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    country: Mapped[Optional[str]] = mapped_column(String(100))
    postal_code: Mapped[Optional[str]] = mapped_column(String(20))

    total_spent: Mapped[float] = mapped_column(_money(), default=0)
    orders_count: Mapped[int] = mapped_column(Integer, default=0)
    tags: Mapped[list] = mapped_column(JSONType, default=list)

    first_purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_purchase_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    orders: Mapped[List["OrderRecord"]] = relationship(back_populates="customer")

    __table_args__ = (
        UniqueConstraint("source_id", "source_type", name="uq_customers_source"),
        Index("idx_customers_email", "email"),
    )


class ProductRecord(Base):
    """Products table"""
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor: Mapped[Optional[str]] = mapped_column(String(255))
    product_type: Mapped[Optional[str]] = mapped_column(String(100))
    sku: Mapped[Optional[str]] = mapped_column(String(100))

    price: Mapped[Optional[float]] = mapped_column(_money())
    compare_at_price: Mapped[Optional[float]] = mapped_column(_money())
    inventory_quantity: Mapped[Optional[int]] = mapped_column(Integer)

    tags: Mapped[list] = mapped_column(JSONType, default=list)
    status: Mapped[Optional[str]] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("source_id", "source_type", name="uq_products_source"),
    )


class OrderRecord(Base):
    """Orders table"""
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    order_number: Mapped[Optional[str]] = mapped_column(String(100))

    customer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("customers.id"))
    email: Mapped[Optional[str]] = mapped_column(String(255))

    financial_status: Mapped[Optional[str]] = mapped_column(String(50))
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(50))
    currency: Mapped[Optional[str]] = mapped_column(String(10))

    subtotal_price: Mapped[float] = mapped_column(_money(), default=0)
    total_tax: Mapped[float] = mapped_column(_money(), default=0)
    total_discounts: Mapped[float] = mapped_column(_money(), default=0)
    total_shipping: Mapped[float] = mapped_column(_money(), default=0)
    total_price: Mapped[Optional[float]] = mapped_column(_money())

    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    tags: Mapped[list] = mapped_column(JSONType, default=list)
    source_name: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    customer: Mapped[Optional["CustomerRecord"]] = relationship(back_populates="orders")
    items: Mapped[List["OrderItemRecord"]] = relationship(
        back_populates="order", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("source_id", "source_type", name="uq_orders_source"),
        Index("idx_orders_customer", "customer_id"),
        Index("idx_orders_processed_at", "processed_at"),
    )


class OrderItemRecord(Base):
    """Order line items table"""
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[Optional[int]] = mapped_column(ForeignKey("products.id"))

    source_product_id: Mapped[Optional[str]] = mapped_column(String(100))
    source_variant_id: Mapped[Optional[str]] = mapped_column(String(100))
    title: Mapped[Optional[str]] = mapped_column(String(255))
    variant_title: Mapped[Optional[str]] = mapped_column(String(255))
    sku: Mapped[Optional[str]] = mapped_column(String(100))

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[float] = mapped_column(_money(), default=0)
    total_discount: Mapped[float] = mapped_column(_money(), default=0)
    fulfillment_status: Mapped[Optional[str]] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    order: Mapped["OrderRecord"] = relationship(back_populates="items")

    __table_args__ = (
        Index("idx_order_items_order", "order_id"),
        Index("idx_order_items_product", "product_id"),
    )


class CustomerMetricsRecord(Base):
    """Customer metrics per calculation date (CLV, churn, RFM)"""
    __tablename__ = "customer_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[int] = mapped_column(
        ForeignKey("customers.id", ondelete="CASCADE"), nullable=False
    )
    calculation_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_revenue: Mapped[float] = mapped_column(_money())
    total_orders: Mapped[int] = mapped_column(Integer)
    average_order_value: Mapped[float] = mapped_column(_money())
    purchase_frequency: Mapped[float] = mapped_column(Numeric(10, 4, asdecimal=False))
    customer_lifespan_days: Mapped[int] = mapped_column(Integer)
    customer_lifetime_value: Mapped[float] = mapped_column(_money())
    churn_probability: Mapped[float] = mapped_column(Numeric(5, 4, asdecimal=False))
    days_since_last_purchase: Mapped[Optional[int]] = mapped_column(Integer)

    rfm_recency_score: Mapped[int] = mapped_column(Integer)
    rfm_frequency_score: Mapped[int] = mapped_column(Integer)
    rfm_monetary_score: Mapped[int] = mapped_column(Integer)
    customer_segment: Mapped[str] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("customer_id", "calculation_date", name="uq_customer_metrics_day"),
        Index("idx_customer_metrics_date", "calculation_date"),
    )


class DailyMetricsRecord(Base):
    """Daily aggregates per source"""
    __tablename__ = "daily_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric_date: Mapped[date] = mapped_column(Date, nullable=False)
    source_type: Mapped[Optional[str]] = mapped_column(String(20))

    total_revenue: Mapped[float] = mapped_column(_money())
    total_orders: Mapped[int] = mapped_column(Integer)
    total_customers: Mapped[int] = mapped_column(Integer)
    new_customers: Mapped[int] = mapped_column(Integer)
    returning_customers: Mapped[int] = mapped_column(Integer)
    average_order_value: Mapped[float] = mapped_column(_money())
    total_products_sold: Mapped[int] = mapped_column(Integer)

    top_selling_products: Mapped[list] = mapped_column(JSONType, default=list)
    revenue_by_source: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("metric_date", "source_type", name="uq_daily_metrics_day"),
    )


class ETLLogRecord(Base):
    """Pipeline run log; the watermark is read from here"""
    __tablename__ = "etl_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pipeline_name: Mapped[str] = mapped_column(String(100), nullable=False)
    source_type: Mapped[Optional[str]] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    records_extracted: Mapped[int] = mapped_column(Integer, default=0)
    records_transformed: Mapped[int] = mapped_column(Integer, default=0)
    records_loaded: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    duration_seconds: Mapped[Optional[float]] = mapped_column(Numeric(12, 3, asdecimal=False))

    # "metadata" is reserved on declarative classes
    run_metadata: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)

    __table_args__ = (
        Index("idx_etl_logs_pipeline", "pipeline_name", "source_type", "started_at"),
    )
