"""
Data Transformation Module
"""
from .entities import Customer, Order, OrderItem, Product
from .normalizer import RecordNormalizer

__all__ = [
    "Customer",
    "Order",
    "OrderItem",
    "Product",
    "RecordNormalizer",
]
