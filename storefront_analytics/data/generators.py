"""
Synthetic Storefront Data

Faker-backed connector that produces Shopify-shaped raw payloads:
- Customers with addresses and tags
- Products with variants
- Orders with line items referencing the generated customers and products

Output is reproducible for a given seed and anchor time, which makes the
connector usable for demos and end-to-end tests without platform credentials.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog
from faker import Faker

from storefront_analytics.ingestion.interfaces import RawRecord, SourceConnector

logger = structlog.get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

PRODUCT_TYPES = [
    ("Electronics", ["Headphones", "Speaker", "Charger", "Camera"]),
    ("Apparel", ["Shirt", "Jacket", "Sneakers", "Hoodie"]),
    ("Home", ["Lamp", "Mug", "Blanket", "Planter"]),
    ("Outdoor", ["Backpack", "Bottle", "Tent", "Lantern"]),
]

VENDORS = ["TechPro", "StyleMax", "HomeEase", "TrailCo", "ValueChoice"]

FINANCIAL_STATUSES = [
    ("paid", 0.80),
    ("pending", 0.10),
    ("refunded", 0.05),
    ("partially_refunded", 0.05),
]

SOURCE_NAMES = ["web", "pos", "mobile_app", "instagram"]


class SyntheticConnector(SourceConnector):
    """
    Connector that fabricates a small storefront.

    Records are generated once, on first fetch. ``since`` filters on
    ``updated_at`` exactly like a platform API would.

    Example:
        connector = SyntheticConnector(customers=25, products=10, orders=120, seed=7)
        orders = await connector.fetch_orders()
    """

    def __init__(
        self,
        customers: int = 50,
        products: int = 20,
        orders: int = 200,
        seed: int = 42,
        now: Optional[datetime] = None,
        history_days: int = 365,
    ):
        self.customer_count = customers
        self.product_count = products
        self.order_count = orders
        self.seed = seed
        self.now = now or datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
        self.history_days = history_days

        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.random = random.Random(seed)

        self._customers: List[RawRecord] = []
        self._products: List[RawRecord] = []
        self._orders: List[RawRecord] = []
        self._generated = False

    async def test_connection(self) -> bool:
        return True

    async def fetch_customers(self, since: Optional[datetime] = None) -> List[RawRecord]:
        self._ensure_generated()
        return self._updated_since(self._customers, since)

    async def fetch_products(self, since: Optional[datetime] = None) -> List[RawRecord]:
        self._ensure_generated()
        return self._updated_since(self._products, since)

    async def fetch_orders(self, since: Optional[datetime] = None) -> List[RawRecord]:
        self._ensure_generated()
        return self._updated_since(self._orders, since)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    @staticmethod
    def _updated_since(records: List[RawRecord], since: Optional[datetime]) -> List[RawRecord]:
        if since is None:
            return list(records)
        return [r for r in records if datetime.fromisoformat(r["updated_at"]) > since]

    def _ensure_generated(self) -> None:
        if self._generated:
            return
        self._customers = [self._customer(i) for i in range(self.customer_count)]
        self._products = [self._product(i) for i in range(self.product_count)]
        self._orders = [self._order(i) for i in range(self.order_count)]
        self._generated = True
        logger.info(
            "Synthetic storefront generated",
            customers=len(self._customers),
            products=len(self._products),
            orders=len(self._orders),
        )

    def _timestamp(self, earliest_days_ago: int) -> datetime:
        return self.now - timedelta(
            days=self.random.randint(0, earliest_days_ago),
            seconds=self.random.randint(0, 86399),
        )

    def _customer(self, index: int) -> RawRecord:
        created_at = self._timestamp(self.history_days)
        return {
            "id": 1000 + index,
            "email": f"{self.fake.user_name()}{index}@{self.fake.free_email_domain()}",
            "first_name": self.fake.first_name(),
            "last_name": self.fake.last_name(),
            "phone": self.fake.phone_number(),
            "default_address": {
                "city": self.fake.city(),
                "province": self.fake.state(),
                "country": "United States",
                "zip": self.fake.postcode(),
            },
            "total_spent": "0.00",
            "orders_count": 0,
            "tags": ", ".join(self.random.sample(["vip", "newsletter", "wholesale", "local"], k=2)),
            "created_at": created_at.isoformat(),
            "updated_at": created_at.isoformat(),
        }

    def _product(self, index: int) -> RawRecord:
        product_type, nouns = self.random.choice(PRODUCT_TYPES)
        price = round(self.random.uniform(8, 400), 2)
        created_at = self._timestamp(self.history_days)
        return {
            "id": 5000 + index,
            "title": f"{self.fake.word().title()} {self.random.choice(nouns)}",
            "vendor": self.random.choice(VENDORS),
            "product_type": product_type,
            "status": "active" if self.random.random() > 0.1 else "draft",
            "tags": product_type.lower(),
            "variants": [
                {
                    "sku": f"SKU-{5000 + index}",
                    "price": f"{price:.2f}",
                    "compare_at_price": f"{price * 1.2:.2f}" if self.random.random() > 0.7 else None,
                    "inventory_quantity": self.random.randint(0, 500),
                }
            ],
            "created_at": created_at.isoformat(),
            "updated_at": created_at.isoformat(),
        }

    def _order(self, index: int) -> RawRecord:
        customer = self.random.choice(self._customers)
        # Every tenth order lands on the anchor date so daily metrics have data
        if index % 10 == 0:
            processed_at = self.now - timedelta(seconds=self.random.randint(0, 3600))
        else:
            processed_at = self._timestamp(self.history_days)

        line_items = []
        subtotal = 0.0
        for _ in range(self.random.choice([1, 1, 1, 2, 2, 3])):
            product = self.random.choice(self._products)
            variant = product["variants"][0]
            quantity = self.random.choice([1, 1, 1, 2, 3])
            price = float(variant["price"])
            subtotal += price * quantity
            line_items.append({
                "product_id": product["id"],
                "variant_id": product["id"] * 10,
                "title": product["title"],
                "sku": variant["sku"],
                "quantity": quantity,
                "price": variant["price"],
                "total_discount": "0.00",
            })

        tax = round(subtotal * 0.08, 2)
        shipping = 0.0 if subtotal > 100 else 9.99
        status = self.random.choices(
            [s[0] for s in FINANCIAL_STATUSES],
            weights=[s[1] for s in FINANCIAL_STATUSES],
        )[0]

        return {
            "id": 90000 + index,
            "order_number": 1001 + index,
            "email": customer["email"].upper() if index % 7 == 0 else customer["email"],
            "financial_status": status,
            "fulfillment_status": "fulfilled" if status == "paid" else None,
            "currency": "USD",
            "subtotal_price": f"{subtotal:.2f}",
            "total_tax": f"{tax:.2f}",
            "total_discounts": "0.00",
            "total_shipping": f"{shipping:.2f}",
            "total_price": f"{subtotal + tax + shipping:.2f}",
            "processed_at": processed_at.isoformat(),
            "source_name": self.random.choice(SOURCE_NAMES),
            "line_items": line_items,
            "created_at": processed_at.isoformat(),
            "updated_at": processed_at.isoformat(),
        }
