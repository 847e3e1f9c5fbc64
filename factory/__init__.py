"""Factory package - Dependency injection for the client under test"""

from .client_factory import create_clickhouse_opener

__all__ = [
    "create_clickhouse_opener",
]
