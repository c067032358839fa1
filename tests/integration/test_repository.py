"""
Integration Tests - Commerce Repository (SQLite)
"""
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_analytics.analytics import CustomerMetrics, CustomerSegment, DailyMetrics, ProductSales
from storefront_analytics.database import Database
from storefront_analytics.database.models import OrderItemRecord
from storefront_analytics.ingestion import ETLRunLog, RunStatus
from storefront_analytics.transformation import Customer, Order, OrderItem, Product


def _customer(source_id="c-1", email="alice@example.com", **fields) -> Customer:
    return Customer(source_id=source_id, source_type="shopify", email=email, **fields)


def _order(source_id="o-1", processed_at=datetime(2024, 3, 15, 9, 30), items=None, **fields) -> Order:
    return Order(
        source_id=source_id,
        source_type="shopify",
        total=fields.pop("total", 50.0),
        processed_at=processed_at,
        line_items=items or [],
        **fields,
    )


def _item(product_id="p-1", quantity=1, price=10.0) -> OrderItem:
    return OrderItem(source_type="shopify", source_product_id=product_id, quantity=quantity, price=price)


class TestUpserts:
    """Tests for source record upserts"""

    async def test_customer_upsert_is_keyed_by_source(self, repository):
        first_id = await repository.upsert_customer(_customer(first_name="Alice", tags=["vip"]))
        second_id = await repository.upsert_customer(_customer(first_name="Alicia", total_spent=12.5))
        other_source = await repository.upsert_customer(
            Customer(source_id="c-1", source_type="woocommerce", email="alice@example.com")
        )

        assert first_id == second_id
        assert other_source != first_id

        rows = await repository.query_customers_with_orders("shopify")
        assert len(rows) == 1
        customer, orders = rows[0]
        assert customer.first_name == "Alicia"
        assert customer.total_spent == 12.5
        assert orders == []

    async def test_product_upsert(self, repository):
        product = Product(source_id="p-1", source_type="shopify", title="Lamp", price=40.0, tags=["home"])

        product_id = await repository.upsert_product(product)
        again = await repository.upsert_product(product.model_copy(update={"price": 35.0}))

        assert product_id == again
        assert await repository.find_product_id("p-1", "shopify") == product_id

    async def test_order_keeps_explicit_customer(self, repository):
        customer_id = await repository.upsert_customer(_customer())

        order_id = await repository.upsert_order(_order(), customer_id)
        same_id = await repository.upsert_order(_order(total=75.0), customer_id)

        assert order_id == same_id
        orders = await repository.query_orders_for_date("shopify", date(2024, 3, 15))
        assert len(orders) == 1
        assert orders[0].customer_id == customer_id
        assert orders[0].total == 75.0


class TestLookups:
    """Tests for customer and product lookups"""

    async def test_find_customer_by_lower_cased_email(self, repository):
        customer_id = await repository.upsert_customer(_customer())

        assert await repository.find_customer_id("ALICE@Example.com", "shopify") == customer_id
        assert await repository.find_customer_id("alice@example.com", "woocommerce") is None
        assert await repository.find_customer_id("", "shopify") is None

    async def test_find_product_without_source_id(self, repository):
        assert await repository.find_product_id(None, "shopify") is None
        assert await repository.find_product_id("", "shopify") is None
        assert await repository.find_product_id("missing", "shopify") is None


class TestOrderItems:
    """Tests for insert_order_items"""

    async def test_items_resolve_products(self, repository):
        product_id = await repository.upsert_product(Product(source_id="p-1", source_type="shopify", title="Lamp"))
        order_id = await repository.upsert_order(_order())

        result = await repository.insert_order_items([_item("p-1", 2), _item("p-unknown")], order_id)

        assert len(result.inserted) == 2
        assert result.failed == []
        assert result.inserted[0].product_id == product_id
        assert result.inserted[0].order_id == order_id
        assert result.inserted[1].product_id is None

    async def test_reinsert_replaces_items(self, repository):
        order_id = await repository.upsert_order(_order())

        await repository.insert_order_items([_item("p-1"), _item("p-2")], order_id)
        await repository.insert_order_items([_item("p-3")], order_id)

        assert await repository.count_rows(OrderItemRecord) == 1
        orders = await repository.query_orders_for_date("shopify", date(2024, 3, 15))
        assert [item.source_product_id for item in orders[0].line_items] == ["p-3"]

    async def test_failed_replacement_keeps_previous_items(self, repository, monkeypatch):
        order_id = await repository.upsert_order(_order())
        await repository.insert_order_items([_item("p-1"), _item("p-2")], order_id)

        async def failing_flush(self, objects=None):
            raise RuntimeError("disk full")

        monkeypatch.setattr(AsyncSession, "flush", failing_flush)
        result = await repository.insert_order_items([_item("p-3"), _item("p-4")], order_id)
        monkeypatch.undo()

        assert result.inserted == []
        assert [f.error for f in result.failed] == ["disk full", "disk full"]
        orders = await repository.query_orders_for_date("shopify", date(2024, 3, 15))
        assert sorted(item.source_product_id for item in orders[0].line_items) == ["p-1", "p-2"]

    async def test_partial_replacement(self, repository, monkeypatch):
        order_id = await repository.upsert_order(_order())
        await repository.insert_order_items([_item("p-1"), _item("p-2")], order_id)

        real_flush = AsyncSession.flush
        calls = []

        async def flaky_flush(self, objects=None):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("deadlock detected")
            await real_flush(self, objects)

        monkeypatch.setattr(AsyncSession, "flush", flaky_flush)
        result = await repository.insert_order_items([_item("p-3"), _item("p-4")], order_id)
        monkeypatch.undo()

        assert [item.source_product_id for item in result.inserted] == ["p-4"]
        assert [f.entity.source_product_id for f in result.failed] == ["p-3"]
        assert await repository.count_rows(OrderItemRecord) == 1

    async def test_empty_items(self, repository):
        result = await repository.insert_order_items([], 1)

        assert result.inserted == []
        assert result.failed == []


class TestPurchaseDates:
    """Tests for update_customer_purchase_dates"""

    async def test_min_and_max_processed_at(self, repository):
        alice = await repository.upsert_customer(_customer())
        await repository.upsert_customer(_customer("c-2", "bob@example.com"))
        await repository.upsert_order(_order("o-1", datetime(2024, 2, 1, 8)), alice)
        await repository.upsert_order(_order("o-2", datetime(2023, 11, 5, 17)), alice)
        await repository.upsert_order(_order("o-3", datetime(2024, 3, 1)), None)

        await repository.update_customer_purchase_dates("shopify")

        customers = {c.source_id: (c, orders) for c, orders in await repository.query_customers_with_orders("shopify")}
        alice_row, alice_orders = customers["c-1"]
        assert alice_row.first_purchase_date == datetime(2023, 11, 5, 17)
        assert alice_row.last_purchase_date == datetime(2024, 2, 1, 8)
        assert [o.source_id for o in alice_orders] == ["o-2", "o-1"]

        bob_row, bob_orders = customers["c-2"]
        assert bob_row.first_purchase_date is None
        assert bob_orders == []


class TestQueryOrdersForDate:
    """Tests for query_orders_for_date"""

    async def test_calendar_day_bounds(self, repository):
        await repository.upsert_order(_order("o-1", datetime(2024, 3, 15, 0, 0)))
        await repository.upsert_order(_order("o-2", datetime(2024, 3, 15, 23, 59, 59)))
        await repository.upsert_order(_order("o-3", datetime(2024, 3, 16, 0, 0)))
        await repository.upsert_order(_order("o-4", datetime(2024, 3, 14, 23, 59)))
        await repository.upsert_order(
            Order(source_id="o-5", source_type="woocommerce", processed_at=datetime(2024, 3, 15, 12))
        )

        orders = await repository.query_orders_for_date("shopify", date(2024, 3, 15))

        assert [o.source_id for o in orders] == ["o-1", "o-2"]


class TestRunLog:
    """Tests for the run log and watermark lookup"""

    async def test_last_successful_run(self, repository):
        def run(status, completed_at, pipeline="main_etl", source="shopify"):
            return ETLRunLog(
                pipeline_name=pipeline,
                source_type=source,
                status=status,
                started_at=completed_at,
                completed_at=completed_at,
                duration_seconds=1.5,
                metadata={"total_loaded": 3},
            )

        await repository.log_run(run(RunStatus.SUCCESS, datetime(2024, 3, 1)))
        latest_id = await repository.log_run(run(RunStatus.SUCCESS, datetime(2024, 3, 10)))
        await repository.log_run(run(RunStatus.FAILED, datetime(2024, 3, 12)))
        await repository.log_run(run(RunStatus.SUCCESS, datetime(2024, 3, 14), source="woocommerce"))
        await repository.log_run(run(RunStatus.SUCCESS, datetime(2024, 3, 14), pipeline="backfill"))

        last = await repository.get_last_successful_run("main_etl", "shopify")

        assert last.id == latest_id
        assert last.completed_at == datetime(2024, 3, 10)
        assert last.duration_seconds == 1.5
        assert last.metadata == {"total_loaded": 3}

    async def test_no_previous_run(self, repository):
        assert await repository.get_last_successful_run("main_etl", "shopify") is None


class TestMetricsUpserts:
    """Tests for customer and daily metric upserts"""

    async def test_customer_metrics_overwrite(self, repository):
        customer_id = await repository.upsert_customer(_customer())
        metrics = CustomerMetrics(
            customer_id=customer_id,
            calculation_date=date(2024, 3, 15),
            total_revenue=100.0,
            total_orders=2,
            average_order_value=50.0,
            customer_segment=CustomerSegment.NEW_CUSTOMERS,
        )

        first = await repository.upsert_customer_metrics(metrics)
        metrics.total_revenue = 150.0
        metrics.customer_segment = CustomerSegment.REGULAR
        second = await repository.upsert_customer_metrics(metrics)

        assert first == second
        rows = await repository.get_customer_metrics(customer_id)
        assert len(rows) == 1
        assert rows[0].total_revenue == 150.0
        assert rows[0].customer_segment == "Regular"

    async def test_daily_metrics_overwrite(self, repository):
        metrics = DailyMetrics(
            metric_date=date(2024, 3, 15),
            source_type="shopify",
            total_revenue=225.0,
            total_orders=2,
            top_selling_products=[ProductSales(product_id="p-1", title="Lamp", quantity=2, revenue=80.0)],
            revenue_by_source={"web": 225.0},
        )

        first = await repository.upsert_daily_metrics(metrics)
        metrics.total_orders = 3
        second = await repository.upsert_daily_metrics(metrics)

        assert first == second
        row = await repository.get_daily_metrics("shopify", date(2024, 3, 15))
        assert row.total_orders == 3
        assert row.top_selling_products == [
            {"product_id": "p-1", "title": "Lamp", "quantity": 2, "revenue": 80.0}
        ]
        assert row.revenue_by_source == {"web": 225.0}


class TestDatabase:
    """Tests for Database connectivity checks"""

    async def test_ping(self, database):
        assert await database.ping() is True

    async def test_ping_unreachable(self, tmp_path):
        database = Database(f"sqlite+aiosqlite:///{tmp_path}/missing/analytics.db")

        try:
            assert await database.ping() is False
        finally:
            await database.dispose()
