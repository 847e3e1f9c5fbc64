"""Models module - Pydantic data models"""

from .client import (
    Auth,
    ClientConfig,
    Compression,
    CompressionMethod,
    Progress,
    StatsSnapshot,
    build_config,
    split_address,
)

__all__ = [
    "Auth",
    "ClientConfig",
    "Compression",
    "CompressionMethod",
    "Progress",
    "StatsSnapshot",
    "build_config",
    "split_address",
]
