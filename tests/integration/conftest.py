"""
Pytest configuration for integration tests

Integration tests talk to the server contract address (127.0.0.1:9000 by
default, see config/providers/databases.yaml). When nothing accepts TCP
connections there, every integration test is skipped instead of failing.
"""

import socket

import pytest

from config.settings import get_settings
from core.models.client import split_address


def _server_reachable(address: str, timeout: float = 1.0) -> bool:
    host, port = split_address(address)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


@pytest.fixture(scope="session")
def clickhouse_available() -> bool:
    return _server_reachable(get_settings().CLICKHOUSE_ADDRESSES[0])


@pytest.fixture(autouse=True)
def require_clickhouse(clickhouse_available):
    """Skip integration tests when the ClickHouse server is not running"""
    if not clickhouse_available:
        pytest.skip(f"ClickHouse not reachable at {get_settings().CLICKHOUSE_ADDRESSES[0]}")
