"""
Customer Analytics Module
"""
from .customer_analytics import (
    CohortSummary,
    CustomerAnalytics,
    CustomerMetrics,
    CustomerSegment,
    DailyMetrics,
    DateLike,
    ProductSales,
    RFMScores,
    as_utc_datetime,
)

__all__ = [
    "CohortSummary",
    "CustomerAnalytics",
    "CustomerMetrics",
    "CustomerSegment",
    "DailyMetrics",
    "DateLike",
    "ProductSales",
    "RFMScores",
    "as_utc_datetime",
]
