"""
Database Module
"""
from .connection import Database
from .models import Base
from .repository import CommerceRepository

__all__ = [
    "Database",
    "Base",
    "CommerceRepository",
]
