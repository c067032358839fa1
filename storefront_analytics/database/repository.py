"""
Commerce Repository

SQLAlchemy implementation of the record store used by the ETL orchestrator.
Every public call opens its own session, so each call commits or rolls back
on its own.
"""

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Type

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import selectinload

from storefront_analytics.analytics import CustomerMetrics, DailyMetrics
from storefront_analytics.ingestion.interfaces import RecordStore
from storefront_analytics.ingestion.results import BatchResult, ETLRunLog, LoadFailure, RunStatus
from storefront_analytics.transformation.entities import Customer, Order, OrderItem, Product
from .connection import Database
from .models import (
    Base,
    CustomerMetricsRecord,
    CustomerRecord,
    DailyMetricsRecord,
    ETLLogRecord,
    OrderItemRecord,
    OrderRecord,
    ProductRecord,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# ENTITY <-> ROW MAPPING
# =============================================================================

def _customer_values(customer: Customer) -> Dict[str, Any]:
    return {
        "email": customer.email,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "phone": customer.phone,
        "city": customer.city,
        "state": customer.state,
        "country": customer.country,
        "postal_code": customer.postal_code,
        "total_spent": customer.total_spent,
        "orders_count": customer.orders_count,
        "tags": list(customer.tags),
    }


def _product_values(product: Product) -> Dict[str, Any]:
    return {
        "title": product.title,
        "vendor": product.vendor,
        "product_type": product.product_type,
        "sku": product.sku,
        "price": product.price,
        "compare_at_price": product.compare_at_price,
        "inventory_quantity": product.inventory_quantity,
        "tags": list(product.tags),
        "status": product.status,
    }


def _order_values(order: Order, customer_id: Optional[int]) -> Dict[str, Any]:
    return {
        "order_number": order.order_number,
        "customer_id": customer_id,
        "email": order.email,
        "financial_status": order.financial_status,
        "fulfillment_status": order.fulfillment_status,
        "currency": order.currency,
        "subtotal_price": order.subtotal,
        "total_tax": order.tax,
        "total_discounts": order.discounts,
        "total_shipping": order.shipping,
        "total_price": order.total,
        "processed_at": order.processed_at,
        "cancelled_at": order.cancelled_at,
        "tags": list(order.tags),
        "source_name": order.source_name,
    }


def _to_customer(row: CustomerRecord) -> Customer:
    return Customer(
        id=row.id,
        source_id=row.source_id,
        source_type=row.source_type,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        city=row.city,
        state=row.state,
        country=row.country,
        postal_code=row.postal_code,
        total_spent=row.total_spent or 0.0,
        orders_count=row.orders_count or 0,
        tags=row.tags or [],
        first_purchase_date=row.first_purchase_date,
        last_purchase_date=row.last_purchase_date,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_order_item(row: OrderItemRecord, source_type: str, source_order_id: str) -> OrderItem:
    return OrderItem(
        id=row.id,
        order_id=row.order_id,
        product_id=row.product_id,
        source_type=source_type,
        source_order_id=source_order_id,
        source_product_id=row.source_product_id,
        source_variant_id=row.source_variant_id,
        title=row.title,
        variant_title=row.variant_title,
        sku=row.sku,
        quantity=row.quantity,
        price=row.price or 0.0,
        total_discount=row.total_discount or 0.0,
        fulfillment_status=row.fulfillment_status,
    )


def _to_order(row: OrderRecord) -> Order:
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        source_id=row.source_id,
        source_type=row.source_type,
        order_number=row.order_number,
        email=row.email,
        financial_status=row.financial_status or "pending",
        fulfillment_status=row.fulfillment_status,
        currency=row.currency or "USD",
        subtotal=row.subtotal_price or 0.0,
        tax=row.total_tax or 0.0,
        discounts=row.total_discounts or 0.0,
        shipping=row.total_shipping or 0.0,
        total=row.total_price,
        processed_at=row.processed_at,
        cancelled_at=row.cancelled_at,
        tags=row.tags or [],
        source_name=row.source_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        line_items=[_to_order_item(item, row.source_type, row.source_id) for item in row.items],
    )


def _to_run_log(row: ETLLogRecord) -> ETLRunLog:
    return ETLRunLog(
        id=row.id,
        pipeline_name=row.pipeline_name,
        source_type=row.source_type,
        status=RunStatus(row.status),
        records_extracted=row.records_extracted or 0,
        records_transformed=row.records_transformed or 0,
        records_loaded=row.records_loaded or 0,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_seconds=row.duration_seconds or 0,
        error_message=row.error_message,
        metadata=row.run_metadata or {},
    )


class CommerceRepository(RecordStore):
    """
    Record store backed by the relational schema in ``models``.

    Example:
        repository = CommerceRepository(Database(settings.database.async_url))
        customer_id = await repository.upsert_customer(customer)
    """

    def __init__(self, database: Database):
        self.database = database

    # -------------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------------

    async def _upsert(
        self,
        model: Type[Base],
        source_id: str,
        source_type: str,
        values: Dict[str, Any],
    ) -> int:
        """Update the row keyed by (source_id, source_type) or insert a new one"""
        async with self.database.session() as session:
            result = await session.execute(
                select(model).where(model.source_id == source_id, model.source_type == source_type)
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = model(source_id=source_id, source_type=source_type, **values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)

            await session.flush()
            return row.id

    async def upsert_customer(self, customer: Customer) -> int:
        return await self._upsert(
            CustomerRecord, customer.source_id, customer.source_type, _customer_values(customer)
        )

    async def upsert_product(self, product: Product) -> int:
        return await self._upsert(
            ProductRecord, product.source_id, product.source_type, _product_values(product)
        )

    async def upsert_order(self, order: Order, customer_id: Optional[int] = None) -> int:
        return await self._upsert(
            OrderRecord,
            order.source_id,
            order.source_type,
            _order_values(order, customer_id or order.customer_id),
        )

    async def insert_order_items(self, items: List[OrderItem], order_id: int) -> BatchResult:
        """
        Replace the line items of an order.

        Items are inserted one at a time. The order's previous items are
        removed in the same transaction as the first item that inserts, so
        they survive when every new item fails.
        """
        result = BatchResult()
        if not items:
            return result

        replaced = False
        for item in items:
            try:
                product_id = await self.find_product_id(item.source_product_id, item.source_type)
                async with self.database.session() as session:
                    if not replaced:
                        await session.execute(delete(OrderItemRecord).where(OrderItemRecord.order_id == order_id))
                    row = OrderItemRecord(
                        order_id=order_id,
                        product_id=product_id,
                        source_product_id=item.source_product_id,
                        source_variant_id=item.source_variant_id,
                        title=item.title,
                        variant_title=item.variant_title,
                        sku=item.sku,
                        quantity=item.quantity,
                        price=item.price,
                        total_discount=item.total_discount,
                        fulfillment_status=item.fulfillment_status,
                    )
                    session.add(row)
                    await session.flush()
                    item_id = row.id
            except Exception as e:
                logger.error("Error inserting order item", order_id=order_id, error=str(e))
                result.failed.append(LoadFailure(entity=item, error=str(e)))
            else:
                replaced = True
                result.inserted.append(
                    item.model_copy(update={"id": item_id, "order_id": order_id, "product_id": product_id})
                )

        return result

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def find_customer_id(self, email: str, source_type: str) -> Optional[int]:
        if not email:
            return None

        async with self.database.session() as session:
            result = await session.execute(
                select(CustomerRecord.id)
                .where(
                    CustomerRecord.email == email.lower(),
                    CustomerRecord.source_type == source_type,
                )
                .order_by(CustomerRecord.id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def find_product_id(self, source_product_id: Optional[str], source_type: str) -> Optional[int]:
        if not source_product_id:
            return None

        async with self.database.session() as session:
            result = await session.execute(
                select(ProductRecord.id)
                .where(
                    ProductRecord.source_id == source_product_id,
                    ProductRecord.source_type == source_type,
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def update_customer_purchase_dates(self, source_type: str) -> None:
        """Set first/last purchase dates from the min/max processed_at of each customer's orders"""
        async with self.database.session() as session:
            result = await session.execute(
                select(
                    OrderRecord.customer_id,
                    func.min(OrderRecord.processed_at),
                    func.max(OrderRecord.processed_at),
                )
                .where(
                    OrderRecord.source_type == source_type,
                    OrderRecord.customer_id.is_not(None),
                )
                .group_by(OrderRecord.customer_id)
            )
            rows = result.all()

            for customer_id, first_purchase, last_purchase in rows:
                await session.execute(
                    update(CustomerRecord)
                    .where(CustomerRecord.id == customer_id)
                    .values(first_purchase_date=first_purchase, last_purchase_date=last_purchase)
                )

        logger.debug("Customer purchase dates updated", source_type=source_type, customers=len(rows))

    # -------------------------------------------------------------------------
    # Run log
    # -------------------------------------------------------------------------

    async def get_last_successful_run(self, pipeline_name: str, source_type: str) -> Optional[ETLRunLog]:
        async with self.database.session() as session:
            result = await session.execute(
                select(ETLLogRecord)
                .where(
                    ETLLogRecord.pipeline_name == pipeline_name,
                    ETLLogRecord.source_type == source_type,
                    ETLLogRecord.status == RunStatus.SUCCESS.value,
                )
                .order_by(ETLLogRecord.completed_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_run_log(row) if row else None

    async def log_run(self, run_log: ETLRunLog) -> int:
        async with self.database.session() as session:
            row = ETLLogRecord(
                pipeline_name=run_log.pipeline_name,
                source_type=run_log.source_type,
                status=run_log.status.value,
                records_extracted=run_log.records_extracted,
                records_transformed=run_log.records_transformed,
                records_loaded=run_log.records_loaded,
                error_message=run_log.error_message,
                started_at=run_log.started_at,
                completed_at=run_log.completed_at,
                duration_seconds=run_log.duration_seconds,
                run_metadata=run_log.metadata,
            )
            session.add(row)
            await session.flush()
            return row.id

    # -------------------------------------------------------------------------
    # Analytics inputs
    # -------------------------------------------------------------------------

    async def query_customers_with_orders(self, source_type: str) -> List[Tuple[Customer, List[Order]]]:
        """Every customer of the source with its stored orders and their line items"""
        async with self.database.session() as session:
            result = await session.execute(
                select(CustomerRecord)
                .where(CustomerRecord.source_type == source_type)
                .options(selectinload(CustomerRecord.orders).selectinload(OrderRecord.items))
                .order_by(CustomerRecord.id)
            )
            customers = result.scalars().all()

            return [
                (
                    _to_customer(row),
                    [_to_order(order) for order in sorted(row.orders, key=lambda o: o.processed_at)],
                )
                for row in customers
            ]

    async def query_orders_for_date(self, source_type: str, metric_date: date) -> List[Order]:
        start = datetime(metric_date.year, metric_date.month, metric_date.day)
        end = start + timedelta(days=1)

        async with self.database.session() as session:
            result = await session.execute(
                select(OrderRecord)
                .where(
                    OrderRecord.source_type == source_type,
                    OrderRecord.processed_at >= start,
                    OrderRecord.processed_at < end,
                )
                .options(selectinload(OrderRecord.items))
                .order_by(OrderRecord.processed_at, OrderRecord.id)
            )
            return [_to_order(row) for row in result.scalars().all()]

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    async def upsert_customer_metrics(self, metrics: CustomerMetrics) -> int:
        """Insert or overwrite the row for (customer_id, calculation_date)"""
        values = {
            "total_revenue": metrics.total_revenue,
            "total_orders": metrics.total_orders,
            "average_order_value": metrics.average_order_value,
            "purchase_frequency": metrics.purchase_frequency,
            "customer_lifespan_days": metrics.customer_lifespan_days,
            "customer_lifetime_value": metrics.customer_lifetime_value,
            "churn_probability": metrics.churn_probability,
            "days_since_last_purchase": metrics.days_since_last_purchase,
            "rfm_recency_score": metrics.rfm_recency_score,
            "rfm_frequency_score": metrics.rfm_frequency_score,
            "rfm_monetary_score": metrics.rfm_monetary_score,
            "customer_segment": metrics.customer_segment.value,
        }

        async with self.database.session() as session:
            result = await session.execute(
                select(CustomerMetricsRecord).where(
                    CustomerMetricsRecord.customer_id == metrics.customer_id,
                    CustomerMetricsRecord.calculation_date == metrics.calculation_date,
                )
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = CustomerMetricsRecord(
                    customer_id=metrics.customer_id,
                    calculation_date=metrics.calculation_date,
                    **values,
                )
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)

            await session.flush()
            return row.id

    async def upsert_daily_metrics(self, metrics: DailyMetrics) -> int:
        """Insert or overwrite the row for (metric_date, source_type)"""
        values = {
            "total_revenue": metrics.total_revenue,
            "total_orders": metrics.total_orders,
            "total_customers": metrics.total_customers,
            "new_customers": metrics.new_customers,
            "returning_customers": metrics.returning_customers,
            "average_order_value": metrics.average_order_value,
            "total_products_sold": metrics.total_products_sold,
            "top_selling_products": metrics.top_products_payload(),
            "revenue_by_source": dict(metrics.revenue_by_source),
        }

        async with self.database.session() as session:
            result = await session.execute(
                select(DailyMetricsRecord).where(
                    DailyMetricsRecord.metric_date == metrics.metric_date,
                    DailyMetricsRecord.source_type == metrics.source_type,
                )
            )
            row = result.scalar_one_or_none()

            if row is None:
                row = DailyMetricsRecord(
                    metric_date=metrics.metric_date,
                    source_type=metrics.source_type,
                    **values,
                )
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)

            await session.flush()
            return row.id

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def get_customer_metrics(self, customer_id: int) -> List[CustomerMetricsRecord]:
        """Stored metric rows of one customer, oldest calculation first"""
        async with self.database.session() as session:
            result = await session.execute(
                select(CustomerMetricsRecord)
                .where(CustomerMetricsRecord.customer_id == customer_id)
                .order_by(CustomerMetricsRecord.calculation_date)
            )
            return list(result.scalars().all())

    async def get_daily_metrics(self, source_type: str, metric_date: date) -> Optional[DailyMetricsRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(DailyMetricsRecord).where(
                    DailyMetricsRecord.source_type == source_type,
                    DailyMetricsRecord.metric_date == metric_date,
                )
            )
            return result.scalar_one_or_none()

    async def count_rows(self, model: Type[Base]) -> int:
        """Row count of one table"""
        async with self.database.session() as session:
            return (await session.execute(select(func.count()).select_from(model))).scalar_one()
