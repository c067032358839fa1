"""
Synthetic Data Module
"""
from .generators import SyntheticConnector

__all__ = [
    "SyntheticConnector",
]
