"""Interfaces module - Abstract base classes for ClickHouse clients"""

from .database import BaseClickHouseClient, BaseRows, Opener, SingleRow

__all__ = [
    "BaseClickHouseClient",
    "BaseRows",
    "Opener",
    "SingleRow",
]
