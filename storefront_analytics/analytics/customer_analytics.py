"""
Customer Analytics Engine

Deterministic customer value and behaviour metrics:
- Customer lifetime value (historic and churn-discounted projection)
- Step-function churn probability
- Threshold-based RFM scoring and rule-based segmentation
- Daily sales aggregates
- Monthly acquisition cohorts

Every calculation is a pure function of its arguments. Callers pass the
calculation date explicitly so results are reproducible.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Union

import polars as pl
import structlog

from storefront_analytics.transformation.entities import Customer, Order, Product
from storefront_analytics.transformation.normalizer import to_utc_naive

logger = structlog.get_logger(__name__)

DateLike = Union[date, datetime]

DAYS_PER_MONTH = 30
MONTHLY_DISCOUNT_RATE = 0.1 / 12  # 10% annual
PROJECTION_MONTHS = 36

# (days since last purchase strictly below, probability)
CHURN_STEPS = [
    (30, 0.05),
    (60, 0.15),
    (90, 0.25),
    (180, 0.45),
    (365, 0.70),
]
CHURN_CEILING = 0.90

# (days since last order at most, score)
RECENCY_THRESHOLDS = [(30, 5), (60, 4), (90, 3), (180, 2)]
# (order count at least, score)
FREQUENCY_THRESHOLDS = [(20, 5), (10, 4), (5, 3), (2, 2)]
# (total revenue at least, score)
MONETARY_THRESHOLDS = [(5000, 5), (2000, 4), (500, 3), (100, 2)]


class CustomerSegment(str, Enum):
    """RFM customer segments"""
    CHAMPIONS = "Champions"
    LOYAL_CUSTOMERS = "Loyal Customers"
    POTENTIAL_LOYALISTS = "Potential Loyalists"
    NEW_CUSTOMERS = "New Customers"
    AT_RISK = "At Risk"
    CANNOT_LOSE = "Cannot Lose"
    HIBERNATING = "Hibernating"
    PRICE_SENSITIVE = "Price Sensitive"
    REGULAR = "Regular"
    INACTIVE = "Inactive"


@dataclass
class RFMScores:
    """RFM scoring results"""
    recency_score: int  # 1-5, 5 = most recent
    frequency_score: int  # 1-5, 5 = most frequent
    monetary_score: int  # 1-5, 5 = highest value
    combined_score: int  # Sum of R+F+M
    segment: CustomerSegment


@dataclass
class CustomerMetrics:
    """Per-customer metrics for one calculation date"""
    customer_id: Optional[int]
    calculation_date: date
    total_revenue: float = 0.0
    total_orders: int = 0
    average_order_value: float = 0.0
    purchase_frequency: float = 0.0  # orders per 30-day month
    customer_lifespan_days: int = 0
    customer_lifetime_value: float = 0.0
    churn_probability: float = 1.0
    days_since_last_purchase: Optional[int] = None
    rfm_recency_score: int = 1
    rfm_frequency_score: int = 1
    rfm_monetary_score: int = 1
    customer_segment: CustomerSegment = CustomerSegment.INACTIVE

    @property
    def rfm_combined_score(self) -> int:
        return self.rfm_recency_score + self.rfm_frequency_score + self.rfm_monetary_score


@dataclass
class ProductSales:
    """Sales of one product on one day"""
    product_id: str
    title: Optional[str]
    quantity: int = 0
    revenue: float = 0.0


@dataclass
class DailyMetrics:
    """Aggregates for the orders processed on one calendar date"""
    metric_date: date
    source_type: Optional[str] = None
    total_revenue: float = 0.0
    total_orders: int = 0
    total_customers: int = 0
    new_customers: int = 0
    returning_customers: int = 0
    average_order_value: float = 0.0
    total_products_sold: int = 0
    top_selling_products: List[ProductSales] = field(default_factory=list)
    revenue_by_source: Dict[str, float] = field(default_factory=dict)

    def top_products_payload(self) -> List[dict]:
        return [asdict(product) for product in self.top_selling_products]


@dataclass
class CohortSummary:
    """Customers acquired in one calendar month"""
    cohort_month: str  # YYYY-MM
    customer_count: int
    total_revenue: float
    average_ltv: float


def as_utc_datetime(value: DateLike) -> datetime:
    """Naive UTC datetime for a date (its midnight) or a datetime"""
    if isinstance(value, datetime):
        return to_utc_naive(value)
    return datetime(value.year, value.month, value.day)


def days_between(later: DateLike, earlier: DateLike) -> int:
    """Whole days from ``earlier`` to ``later``, truncated toward zero"""
    delta = as_utc_datetime(later) - as_utc_datetime(earlier)
    return int(delta.total_seconds() / 86400)


def _score(value: float, thresholds: Sequence[tuple], higher_is_better: bool = True) -> int:
    for bound, score in thresholds:
        if (value >= bound) if higher_is_better else (value <= bound):
            return score
    return 1


def _order_total(order: Order) -> float:
    return order.total or 0.0


class CustomerAnalytics:
    """
    Customer analytics calculator.

    Holds no state besides configuration; every method returns a fresh
    result computed from its arguments only.

    Example:
        analytics = CustomerAnalytics()
        metrics = analytics.calculate_customer_metrics(customer, orders, date(2024, 3, 1))
    """

    def __init__(self, top_products_limit: int = 10):
        self.top_products_limit = top_products_limit

    # -------------------------------------------------------------------------
    # Customer metrics
    # -------------------------------------------------------------------------

    def calculate_customer_metrics(
        self,
        customer: Customer,
        orders: Optional[Iterable[Order]],
        as_of: DateLike,
    ) -> CustomerMetrics:
        """
        Calculate value and behaviour metrics for one customer.

        Args:
            customer: The customer the orders belong to
            orders: The customer's orders, in any order
            as_of: Calculation date

        Returns:
            CustomerMetrics for (customer.id, as_of date)
        """
        as_of_dt = as_utc_datetime(as_of)
        calculation_date = as_of_dt.date()

        customer_orders = sorted(orders or [], key=lambda o: to_utc_naive(o.processed_at))
        if not customer_orders:
            return self.empty_metrics(customer.id, calculation_date)

        total_orders = len(customer_orders)
        total_revenue = sum(_order_total(o) for o in customer_orders)
        average_order_value = total_revenue / total_orders

        first_order_at = customer_orders[0].processed_at
        last_order_at = customer_orders[-1].processed_at
        lifespan_days = max(days_between(last_order_at, first_order_at), 1)
        days_since_last = days_between(as_of_dt, last_order_at)

        months_active = max(lifespan_days / DAYS_PER_MONTH, 1)
        purchase_frequency = total_orders / months_active

        churn = self.churn_probability(days_since_last)
        simple_clv = average_order_value * purchase_frequency * (lifespan_days / DAYS_PER_MONTH)
        predictive_clv = self.predictive_clv(average_order_value, purchase_frequency, churn)

        rfm = self.calculate_rfm_scores(customer_orders, as_of_dt)

        return CustomerMetrics(
            customer_id=customer.id,
            calculation_date=calculation_date,
            total_revenue=total_revenue,
            total_orders=total_orders,
            average_order_value=average_order_value,
            purchase_frequency=purchase_frequency,
            customer_lifespan_days=lifespan_days,
            customer_lifetime_value=(simple_clv + predictive_clv) / 2,
            churn_probability=churn,
            days_since_last_purchase=days_since_last,
            rfm_recency_score=rfm.recency_score,
            rfm_frequency_score=rfm.frequency_score,
            rfm_monetary_score=rfm.monetary_score,
            customer_segment=rfm.segment,
        )

    @staticmethod
    def empty_metrics(customer_id: Optional[int], calculation_date: date) -> CustomerMetrics:
        """Metrics for a customer without orders"""
        return CustomerMetrics(customer_id=customer_id, calculation_date=calculation_date)

    @staticmethod
    def churn_probability(days_since_last_purchase: int) -> float:
        for bound, probability in CHURN_STEPS:
            if days_since_last_purchase < bound:
                return probability
        return CHURN_CEILING

    @staticmethod
    def predictive_clv(
        average_order_value: float,
        purchase_frequency: float,
        churn_probability: float,
    ) -> float:
        """
        Churn-discounted CLV.

        CLV = monthly revenue × retention / (1 + discount − retention),
        falling back to a flat 36-month projection when retention is high
        enough to make the denominator non-positive.
        """
        monthly_revenue = average_order_value * purchase_frequency
        retention = 1 - churn_probability

        if retention >= 1 + MONTHLY_DISCOUNT_RATE:
            return monthly_revenue * PROJECTION_MONTHS

        return monthly_revenue * retention / (1 + MONTHLY_DISCOUNT_RATE - retention)

    # -------------------------------------------------------------------------
    # RFM
    # -------------------------------------------------------------------------

    def calculate_rfm_scores(self, orders: Sequence[Order], as_of: DateLike) -> RFMScores:
        """Score recency, frequency and monetary value on fixed 1-5 thresholds"""
        if not orders:
            return RFMScores(1, 1, 1, 3, CustomerSegment.INACTIVE)

        last_order_at = max(to_utc_naive(o.processed_at) for o in orders)
        recency = _score(days_between(as_of, last_order_at), RECENCY_THRESHOLDS, higher_is_better=False)
        frequency = _score(len(orders), FREQUENCY_THRESHOLDS)
        monetary = _score(sum(_order_total(o) for o in orders), MONETARY_THRESHOLDS)

        return RFMScores(
            recency_score=recency,
            frequency_score=frequency,
            monetary_score=monetary,
            combined_score=recency + frequency + monetary,
            segment=self.determine_segment(recency, frequency, monetary),
        )

    @staticmethod
    def determine_segment(recency: int, frequency: int, monetary: int) -> CustomerSegment:
        """First matching rule wins; the rules overlap, so order matters"""
        combined = recency + frequency + monetary

        if recency >= 4 and frequency >= 4 and monetary >= 4:
            return CustomerSegment.CHAMPIONS
        if frequency >= 3 and monetary >= 3 and combined >= 9:
            return CustomerSegment.LOYAL_CUSTOMERS
        if recency >= 3 and frequency >= 2 and combined >= 7:
            return CustomerSegment.POTENTIAL_LOYALISTS
        if recency >= 4 and frequency <= 2:
            return CustomerSegment.NEW_CUSTOMERS
        if recency <= 2 and frequency >= 3 and monetary >= 3:
            return CustomerSegment.AT_RISK
        if recency <= 2 and monetary >= 4:
            return CustomerSegment.CANNOT_LOSE
        if recency <= 2 and frequency <= 2 and monetary <= 2:
            return CustomerSegment.HIBERNATING
        if monetary <= 2 and frequency >= 3:
            return CustomerSegment.PRICE_SENSITIVE
        return CustomerSegment.REGULAR

    # -------------------------------------------------------------------------
    # Daily aggregates
    # -------------------------------------------------------------------------

    def calculate_daily_metrics(
        self,
        orders: Iterable[Order],
        products: Optional[Iterable[Product]],
        calculation_date: DateLike,
    ) -> DailyMetrics:
        """
        Aggregate the orders processed on the calendar date of ``calculation_date``.

        New vs returning customers is a same-day split: one order that day
        counts as new, more than one as returning.
        """
        metric_date = as_utc_datetime(calculation_date).date()
        day_orders = [o for o in orders if to_utc_naive(o.processed_at).date() == metric_date]

        titles = {p.source_id: p.title for p in products or []}
        metrics = DailyMetrics(metric_date=metric_date, total_orders=len(day_orders))

        customer_order_counts: Dict[int, int] = defaultdict(int)
        product_sales: Dict[str, ProductSales] = {}

        for order in day_orders:
            total = _order_total(order)
            metrics.total_revenue += total

            if order.customer_id is not None:
                customer_order_counts[order.customer_id] += 1

            source = order.source_name or "direct"
            metrics.revenue_by_source[source] = metrics.revenue_by_source.get(source, 0.0) + total

            for item in order.line_items:
                quantity = item.quantity or 0
                metrics.total_products_sold += quantity

                product_id = item.source_product_id
                if not product_id:
                    continue
                if product_id not in product_sales:
                    product_sales[product_id] = ProductSales(
                        product_id=product_id,
                        title=item.title or titles.get(product_id),
                    )
                sales = product_sales[product_id]
                sales.quantity += quantity
                sales.revenue += (item.price or 0.0) * quantity

        if metrics.total_orders > 0:
            metrics.average_order_value = metrics.total_revenue / metrics.total_orders

        # sorted() is stable, so equal revenue keeps first-seen order
        ranked = sorted(product_sales.values(), key=lambda p: p.revenue, reverse=True)
        metrics.top_selling_products = ranked[: self.top_products_limit]

        metrics.total_customers = len(customer_order_counts)
        metrics.new_customers = sum(1 for count in customer_order_counts.values() if count == 1)
        metrics.returning_customers = metrics.total_customers - metrics.new_customers

        return metrics

    # -------------------------------------------------------------------------
    # Cohorts
    # -------------------------------------------------------------------------

    def analyze_cohorts(
        self,
        customers: Iterable[Customer],
        orders: Iterable[Order],
    ) -> Dict[str, CohortSummary]:
        """
        Group customers by the month of their first purchase.

        Customers without a first purchase date are left out. Revenue is the
        lifetime order total of each member.

        Returns:
            Cohort summaries keyed by "YYYY-MM", in month order
        """
        revenue_by_customer: Dict[int, float] = defaultdict(float)
        for order in orders:
            if order.customer_id is not None:
                revenue_by_customer[order.customer_id] += _order_total(order)

        cohort_months: List[str] = []
        revenues: List[float] = []
        for customer in customers:
            first_purchase = customer.first_purchase_date
            if first_purchase is None:
                continue
            cohort_months.append(f"{first_purchase.year:04d}-{first_purchase.month:02d}")
            revenues.append(revenue_by_customer.get(customer.id, 0.0))

        frame = pl.DataFrame(
            {"cohort_month": cohort_months, "revenue": revenues},
            schema={"cohort_month": pl.Utf8, "revenue": pl.Float64},
        )
        summary = (
            frame.group_by("cohort_month")
            .agg([
                pl.len().alias("customer_count"),
                pl.col("revenue").sum().alias("total_revenue"),
            ])
            .sort("cohort_month")
        )

        cohorts = {
            row["cohort_month"]: CohortSummary(
                cohort_month=row["cohort_month"],
                customer_count=row["customer_count"],
                total_revenue=row["total_revenue"],
                average_ltv=row["total_revenue"] / row["customer_count"],
            )
            for row in summary.iter_rows(named=True)
        }

        logger.debug("Cohorts analyzed", cohorts=len(cohorts), customers=len(cohort_months))
        return cohorts
