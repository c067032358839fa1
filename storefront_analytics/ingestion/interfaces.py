"""
Collaborator Contracts

Abstract interfaces for the two external collaborators of the orchestrator:
storefront connectors (one per platform) and the record store.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from storefront_analytics.analytics import CustomerMetrics, DailyMetrics
from storefront_analytics.transformation.entities import Customer, Order, OrderItem, Product
from .results import BatchResult, ETLRunLog

RawRecord = Dict[str, Any]


class SourceConnector(ABC):
    """Abstract base class for storefront platform connectors"""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True when the platform API is reachable with the configured credentials"""
        pass

    @abstractmethod
    async def fetch_customers(self, since: Optional[datetime] = None) -> List[RawRecord]:
        pass

    @abstractmethod
    async def fetch_products(self, since: Optional[datetime] = None) -> List[RawRecord]:
        pass

    @abstractmethod
    async def fetch_orders(self, since: Optional[datetime] = None) -> List[RawRecord]:
        """Orders with their nested ``line_items``"""
        pass


class RecordStore(ABC):
    """
    Abstract base class for the persistence layer.

    Every call is atomic on its own; the orchestrator needs no
    multi-statement transactions.
    """

    @abstractmethod
    async def upsert_customer(self, customer: Customer) -> int:
        pass

    @abstractmethod
    async def upsert_product(self, product: Product) -> int:
        pass

    @abstractmethod
    async def upsert_order(self, order: Order, customer_id: Optional[int] = None) -> int:
        pass

    @abstractmethod
    async def insert_order_items(self, items: List[OrderItem], order_id: int) -> BatchResult:
        """Insert items one at a time; a failing item does not stop the others"""
        pass

    @abstractmethod
    async def find_customer_id(self, email: str, source_type: str) -> Optional[int]:
        pass

    @abstractmethod
    async def find_product_id(self, source_product_id: Optional[str], source_type: str) -> Optional[int]:
        pass

    @abstractmethod
    async def update_customer_purchase_dates(self, source_type: str) -> None:
        """Derive first/last purchase dates of every customer from its stored orders"""
        pass

    @abstractmethod
    async def get_last_successful_run(self, pipeline_name: str, source_type: str) -> Optional[ETLRunLog]:
        pass

    @abstractmethod
    async def log_run(self, run_log: ETLRunLog) -> int:
        pass

    @abstractmethod
    async def query_customers_with_orders(self, source_type: str) -> List[Tuple[Customer, List[Order]]]:
        pass

    @abstractmethod
    async def query_orders_for_date(self, source_type: str, metric_date: date) -> List[Order]:
        """Orders processed on ``metric_date`` with their line items"""
        pass

    @abstractmethod
    async def upsert_customer_metrics(self, metrics: CustomerMetrics) -> int:
        pass

    @abstractmethod
    async def upsert_daily_metrics(self, metrics: DailyMetrics) -> int:
        pass
