"""
Storefront Analytics

Incremental ETL and customer analytics for multi-platform commerce data.
"""

__version__ = "1.0.0"
