"""
Test Suite Configuration
"""
import itertools
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from storefront_analytics.analytics import CustomerMetrics, DailyMetrics
from storefront_analytics.config import Settings
from storefront_analytics.database import CommerceRepository, Database
from storefront_analytics.ingestion import BatchResult, ETLRunLog, LoadFailure, RecordStore, SourceConnector
from storefront_analytics.ingestion.results import RunStatus
from storefront_analytics.transformation import Customer, Order, OrderItem, Product

CALCULATION_TIME = datetime(2024, 3, 15, 12, 0, 0)


# =============================================================================
# FAKES
# =============================================================================

class StaticConnector(SourceConnector):
    """Connector serving fixed raw records and recording the watermarks it receives"""

    def __init__(
        self,
        customers: Optional[list] = None,
        products: Optional[list] = None,
        orders: Optional[list] = None,
        connected: bool = True,
        connection_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
    ):
        self.customers = customers or []
        self.products = products or []
        self.orders = orders or []
        self.connected = connected
        self.connection_error = connection_error
        self.fetch_error = fetch_error
        self.since_calls: List[Optional[datetime]] = []

    async def test_connection(self) -> bool:
        if self.connection_error:
            raise self.connection_error
        return self.connected

    async def fetch_customers(self, since=None):
        self.since_calls.append(since)
        return list(self.customers)

    async def fetch_products(self, since=None):
        self.since_calls.append(since)
        return list(self.products)

    async def fetch_orders(self, since=None):
        self.since_calls.append(since)
        if self.fetch_error:
            raise self.fetch_error
        return list(self.orders)


class InMemoryStore(RecordStore):
    """Dictionary-backed record store with switches for injecting failures"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.customers: Dict[Tuple[str, str], Customer] = {}
        self.products: Dict[Tuple[str, str], Product] = {}
        self.orders: Dict[Tuple[str, str], Order] = {}
        self.order_items: Dict[int, List[OrderItem]] = {}
        self.customer_metrics: Dict[Tuple[int, date], CustomerMetrics] = {}
        self.daily_metrics: Dict[Tuple[date, str], DailyMetrics] = {}
        self.run_logs: List[ETLRunLog] = []

        self.failing_orders: set = set()
        self.failing_items: set = set()
        self.watermark_error: Optional[Exception] = None
        self.log_error: Optional[Exception] = None
        self.metrics_error: Optional[Exception] = None

    def _upsert(self, table: dict, entity, **updates) -> int:
        key = (entity.source_id, entity.source_type)
        existing = table.get(key)
        entity_id = existing.id if existing else next(self._ids)
        table[key] = entity.model_copy(update={"id": entity_id, **updates})
        return entity_id

    async def upsert_customer(self, customer):
        return self._upsert(self.customers, customer)

    async def upsert_product(self, product):
        return self._upsert(self.products, product)

    async def upsert_order(self, order, customer_id=None):
        if order.source_id in self.failing_orders:
            raise RuntimeError(f"constraint violation on order {order.source_id}")
        return self._upsert(
            self.orders, order, customer_id=customer_id or order.customer_id, line_items=[]
        )

    async def insert_order_items(self, items, order_id):
        result = BatchResult()
        self.order_items[order_id] = []
        for item in items:
            if item.source_product_id in self.failing_items:
                result.failed.append(LoadFailure(entity=item, error="item rejected"))
                continue
            stored = item.model_copy(update={
                "id": next(self._ids),
                "order_id": order_id,
                "product_id": await self.find_product_id(item.source_product_id, item.source_type),
            })
            self.order_items[order_id].append(stored)
            result.inserted.append(stored)
        return result

    async def find_customer_id(self, email, source_type):
        for customer in self.customers.values():
            if customer.source_type == source_type and customer.email == email.lower():
                return customer.id
        return None

    async def find_product_id(self, source_product_id, source_type):
        product = self.products.get((source_product_id, source_type))
        return product.id if product else None

    def _orders_of(self, customer_id: int) -> List[Order]:
        orders = [o for o in self.orders.values() if o.customer_id == customer_id]
        return [
            o.model_copy(update={"line_items": self.order_items.get(o.id, [])})
            for o in sorted(orders, key=lambda o: o.processed_at)
        ]

    async def update_customer_purchase_dates(self, source_type):
        for key, customer in self.customers.items():
            orders = self._orders_of(customer.id)
            if customer.source_type != source_type or not orders:
                continue
            self.customers[key] = customer.model_copy(update={
                "first_purchase_date": orders[0].processed_at,
                "last_purchase_date": orders[-1].processed_at,
            })

    async def get_last_successful_run(self, pipeline_name, source_type):
        if self.watermark_error:
            raise self.watermark_error
        runs = [
            r for r in self.run_logs
            if r.pipeline_name == pipeline_name
            and r.source_type == source_type
            and r.status == RunStatus.SUCCESS
        ]
        return max(runs, key=lambda r: r.completed_at) if runs else None

    async def log_run(self, run_log):
        if self.log_error:
            raise self.log_error
        run_id = next(self._ids)
        self.run_logs.append(run_log.model_copy(update={"id": run_id}, deep=True))
        return run_id

    async def query_customers_with_orders(self, source_type):
        return [
            (customer, self._orders_of(customer.id))
            for customer in self.customers.values()
            if customer.source_type == source_type
        ]

    async def query_orders_for_date(self, source_type, metric_date):
        return [
            o.model_copy(update={"line_items": self.order_items.get(o.id, [])})
            for o in self.orders.values()
            if o.source_type == source_type and o.processed_at.date() == metric_date
        ]

    async def upsert_customer_metrics(self, metrics):
        if self.metrics_error:
            raise self.metrics_error
        self.customer_metrics[(metrics.customer_id, metrics.calculation_date)] = metrics
        return len(self.customer_metrics)

    async def upsert_daily_metrics(self, metrics):
        if self.metrics_error:
            raise self.metrics_error
        self.daily_metrics[(metrics.metric_date, metrics.source_type)] = metrics
        return len(self.daily_metrics)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(app_env="testing", _env_file=None)


@pytest.fixture
def clock():
    """Fixed clock returning the calculation time used across tests"""
    return lambda: CALCULATION_TIME


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def connector_factory():
    """Build StaticConnector instances"""
    return StaticConnector


@pytest.fixture
async def database():
    """In-memory SQLite database shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    db = Database("sqlite+aiosqlite://", engine=engine)
    await db.create_all()

    yield db

    await db.dispose()


@pytest.fixture
def repository(database) -> CommerceRepository:
    return CommerceRepository(database)


@pytest.fixture
def raw_customers() -> list:
    """Shopify-shaped customers; Bob never orders"""
    return [
        {
            "id": 101,
            "email": "Alice@Example.com",
            "first_name": "Alice",
            "last_name": "Smith",
            "default_address": {"city": "Portland", "province": "Oregon", "country": "United States", "zip": "97201"},
            "total_spent": "132.50",
            "orders_count": 2,
            "tags": "vip, newsletter",
            "created_at": "2023-11-02T08:00:00Z",
            "updated_at": "2024-03-15T09:30:00Z",
        },
        {
            "id": 102,
            "email": "bob@example.com",
            "first_name": "Bob",
            "last_name": "Jones",
            "created_at": "2024-02-01T10:00:00Z",
            "updated_at": "2024-02-01T10:00:00Z",
        },
    ]


@pytest.fixture
def raw_products() -> list:
    return [
        {
            "id": 501,
            "title": "Desk Lamp",
            "vendor": "HomeEase",
            "product_type": "Home",
            "status": "active",
            "variants": [{"sku": "LAMP-1", "price": "40.00", "inventory_quantity": 12}],
        },
        {
            "id": 502,
            "title": "Mug",
            "vendor": "HomeEase",
            "variants": [{"sku": "MUG-1", "price": "12.50"}],
        },
    ]


@pytest.fixture
def raw_orders() -> list:
    """Three orders with four line items; 1003 is a guest checkout"""
    return [
        {
            "id": 1001,
            "order_number": 1001,
            "email": "alice@example.com",
            "financial_status": "paid",
            "total_price": "92.50",
            "subtotal_price": "92.50",
            "processed_at": "2024-03-15T09:30:00Z",
            "source_name": "web",
            "line_items": [
                {"product_id": 501, "title": "Desk Lamp", "quantity": 2, "price": "40.00"},
                {"product_id": 502, "title": "Mug", "quantity": 1, "price": "12.50"},
            ],
        },
        {
            "id": 1002,
            "order_number": 1002,
            "email": "ALICE@example.com",
            "financial_status": "paid",
            "total_price": "40.00",
            "processed_at": "2024-01-10T15:00:00Z",
            "source_name": "pos",
            "line_items": [
                {"product_id": 501, "title": "Desk Lamp", "quantity": 1, "price": "40.00"},
            ],
        },
        {
            "id": 1003,
            "order_number": 1003,
            "email": "guest@example.com",
            "financial_status": "pending",
            "total_price": "25.00",
            "processed_at": "2024-03-15T11:00:00Z",
            "line_items": [
                {"product_id": 502, "title": "Mug", "quantity": 2, "price": "12.50"},
            ],
        },
    ]


@pytest.fixture
def shopify_connector(raw_customers, raw_products, raw_orders) -> StaticConnector:
    return StaticConnector(customers=raw_customers, products=raw_products, orders=raw_orders)


@pytest.fixture
def make_order():
    """Build canonical orders for analytics tests"""
    counter = itertools.count(1)

    def _make(
        processed_at: datetime,
        total: Optional[float] = 100.0,
        customer_id: Optional[int] = 1,
        source_name: Optional[str] = None,
        line_items: Optional[List[OrderItem]] = None,
    ) -> Order:
        number = next(counter)
        return Order(
            id=number,
            customer_id=customer_id,
            source_id=f"ord-{number}",
            source_type="shopify",
            total=total,
            processed_at=processed_at,
            source_name=source_name,
            line_items=line_items or [],
        )

    return _make


@pytest.fixture
def sample_customer() -> Customer:
    return Customer(id=1, source_id="cust-1", source_type="shopify", email="alice@example.com")
