"""
Pytest configuration for test suite

Markers:
- unit: Fast unit tests (no external dependencies, driver mocked)
- integration: Integration tests (requires a ClickHouse server on 127.0.0.1:9000)
- slow: Slow-running tests (>10 seconds)
"""

import logging

from config.settings import get_settings


def pytest_configure(config):
    """Register custom markers and configure logging from LOG_LEVEL"""
    config.addinivalue_line("markers", "unit: Fast unit tests (no dependencies)")
    config.addinivalue_line(
        "markers", "integration: Integration tests (requires ClickHouse server)"
    )
    config.addinivalue_line("markers", "slow: Slow tests (>10 seconds)")

    logging.basicConfig(
        level=get_settings().LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
