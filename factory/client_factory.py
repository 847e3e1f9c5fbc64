"""
Client factory - Resolve the ClickHouse client implementation under test

Dependency injection pattern: the conformance suite only sees the
BaseClickHouseClient contract, never a concrete driver.
"""

import importlib
import logging

from config.settings import get_settings
from core.interfaces.database import Opener

logger = logging.getLogger(__name__)


def create_clickhouse_opener(impl: str | None = None) -> Opener:
    """
    Create the open_client callable based on CLICKHOUSE_CLIENT_IMPL config

    Args:
        impl: Implementation name; defaults to settings.CLICKHOUSE_CLIENT_IMPL

    Returns:
        Opener: async callable ClientConfig -> BaseClickHouseClient

    Raises:
        ValueError: If the implementation is unknown or its opener is not callable

    Examples:
        >>> # .env: CLICKHOUSE_CLIENT_IMPL=clickhouse_driver
        >>> opener = create_clickhouse_opener()  # Returns providers.opensource.clickhouse.open_client
        >>>
        >>> # .env: CLICKHOUSE_CLIENT_IMPL=my_package.client:open_client
        >>> opener = create_clickhouse_opener()  # Returns my_package.client.open_client
    """
    name = (impl or get_settings().CLICKHOUSE_CLIENT_IMPL).strip()

    if name.lower() in ("clickhouse_driver", "clickhouse-driver", "default"):
        from providers.opensource.clickhouse import open_client

        logger.info("✓ Using clickhouse-driver reference client")
        return open_client

    if ":" in name:
        module_name, _, attribute = name.partition(":")
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise ValueError(f"Cannot import client implementation '{name}': {e}") from e

        opener = getattr(module, attribute, None)
        if not callable(opener):
            raise ValueError(f"Client implementation '{name}' is not a callable opener")

        logger.info(f"✓ Using client implementation {name}")
        return opener

    raise ValueError(
        f"Unsupported client implementation: {name}. "
        f"Supported: clickhouse_driver, module:opener"
    )
