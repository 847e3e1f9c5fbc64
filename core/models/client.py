"""
Client models

Pydantic models for the client surface:
- ClientConfig: Input to open_client (addresses, auth, compression, debug)
- Progress: Server-pushed query progress counters
- StatsSnapshot: Connection pool counters
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors import ConfigurationError


def split_address(address: str) -> tuple[str, int]:
    """
    Split "host:port" into its parts

    IPv6 hosts must be bracketed ("[::1]:9000").

    Raises:
        ValueError: If the address is not host:port with a valid port
    """
    host, sep, port = address.strip().rpartition(":")
    if not sep or not host or not port:
        raise ValueError(f"Address must be host:port, got '{address}'")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"IPv6 host must be bracketed, got '{address}'")

    if not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"Invalid port in address '{address}'")

    return host, int(port)


class CompressionMethod(str, Enum):
    """Supported block compression methods"""

    LZ4 = "lz4"


class Auth(BaseModel):
    """Credentials and default database"""

    model_config = ConfigDict(frozen=True)

    database: str = Field(default="default", description="Default database for queries")
    username: str = Field(default="default", description="ClickHouse user")
    password: str = Field(default="", description="Password (empty for the default user)")


class Compression(BaseModel):
    """Block compression settings"""

    model_config = ConfigDict(frozen=True)

    method: CompressionMethod = Field(default=CompressionMethod.LZ4)


class ClientConfig(BaseModel):
    """
    Client configuration record

    Immutable once built. Addresses are tried in order (failover list).

    Example:
        >>> config = ClientConfig(
        ...     addresses=["127.0.0.1:9000"],
        ...     compression=Compression(method=CompressionMethod.LZ4),
        ... )
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    addresses: tuple[str, ...] = Field(description="Ordered failover list of host:port")
    auth: Auth = Field(default_factory=Auth)
    compression: Compression | None = Field(default=None, description="None disables compression")
    debug: bool = Field(default=False, description="Verbose client-side logging")
    dial_timeout: float = Field(default=5.0, gt=0, description="Connect timeout per address (s)")
    max_open_conns: int = Field(default=3, ge=1, description="Connection pool size")
    settings: dict[str, Any] = Field(
        default_factory=dict, description="Query settings applied to every query"
    )

    @field_validator("addresses")
    @classmethod
    def addresses_valid(cls, v):
        if not v:
            raise ValueError("Addresses list cannot be empty")
        for address in v:
            split_address(address)
        return v

    @property
    def hosts(self) -> list[tuple[str, int]]:
        """Addresses as (host, port) pairs, in failover order"""
        return [split_address(address) for address in self.addresses]


def build_config(**fields: Any) -> ClientConfig:
    """
    Build a ClientConfig from literal fields

    Args:
        **fields: ClientConfig fields; auth and compression may be given as dicts,
            compression may also be the method name ("lz4")

    Returns:
        Validated ClientConfig

    Raises:
        ConfigurationError: If any field is invalid (empty addresses, unknown compression)

    Example:
        >>> config = build_config(addresses=["127.0.0.1:9000"], compression="lz4", debug=True)
    """
    if isinstance(fields.get("compression"), str):
        fields["compression"] = {"method": fields["compression"]}

    try:
        return ClientConfig(**fields)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid client configuration: {e}") from e


class Progress(BaseModel):
    """
    Cumulative query progress

    Counters only grow during a query.
    """

    rows: int = Field(default=0, description="Rows read so far")
    bytes: int = Field(default=0, description="Bytes read so far")
    total_rows: int = Field(default=0, description="Estimated rows to read")
    written_rows: int = Field(default=0)
    written_bytes: int = Field(default=0)
    elapsed: float = Field(default=0.0, description="Seconds since the query was sent")


class StatsSnapshot(BaseModel):
    """Connection pool counters at one point in time"""

    open_connections: int = Field(default=0, description="Connections owned by the pool")
    idle: int = Field(default=0, description="Connections waiting in the pool")
    in_use: int = Field(default=0, description="Connections checked out by operations")
    max_open_conns: int = Field(default=0, description="Pool size limit")
