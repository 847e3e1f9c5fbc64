"""
Application Settings - Load from YAML configs + .env secrets

Design Philosophy:
- Server topology (addresses, database, user) → YAML files (public, versioned in git)
- Secrets (passwords) → .env file (gitignored)

Defaults match the conformance server contract (127.0.0.1:9000, default user,
empty password), so the suite runs without any environment variables.

Uses Pydantic for validation and type safety
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models.client import ClientConfig, build_config
from core.utils.config import load_yaml_safe

CONFIG_DIR = Path(__file__).parent / "providers"


class Settings(BaseSettings):
    """
    Application settings

    Architecture:
    - Infrastructure configs → config/providers/databases.yaml (public)
    - Secrets → .env (gitignored)

    Usage:
        from config.settings import get_settings

        settings = get_settings()
        print(settings.CLICKHOUSE_ADDRESSES)  # From databases.yaml
        print(settings.CLICKHOUSE_PASSWORD)  # From .env
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in .env
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Load YAML configs from files (cached at class level)
        if not hasattr(Settings, "_yaml_loaded"):
            Settings._database_config = load_yaml_safe(str(CONFIG_DIR / "databases.yaml"))
            Settings._yaml_loaded = True

    # ============================================
    # ENVIRONMENT (.env only)
    # ============================================
    ENVIRONMENT: str = Field(default="local", description="Environment: local, ci")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # ============================================
    # CLIENT UNDER TEST (.env only)
    # ============================================
    CLICKHOUSE_CLIENT_IMPL: str = Field(
        default="clickhouse_driver",
        description="Client implementation: clickhouse_driver or module:opener",
    )

    # ============================================
    # CLICKHOUSE (from YAML + .env)
    # ============================================
    @property
    def CLICKHOUSE_ADDRESSES(self) -> list[str]:
        """Primary address list from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("addresses", ["127.0.0.1:9000"])

    @property
    def CLICKHOUSE_FAILOVER_ADDRESSES(self) -> list[str]:
        """Failover list with unreachable leading entries from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get(
            "failover_addresses", ["127.0.0.1:9001", "127.0.0.1:9002", "127.0.0.1:9000"]
        )

    @property
    def CLICKHOUSE_DB(self) -> str:
        """ClickHouse database from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("database", "default")

    @property
    def CLICKHOUSE_USER(self) -> str:
        """ClickHouse user from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("user", "default")

    # ClickHouse password from .env (secret)
    CLICKHOUSE_PASSWORD: str = Field(default="")

    @property
    def CLICKHOUSE_COMPRESSION(self) -> str | None:
        """Compression method from databases.yaml (null disables)"""
        return self._database_config.get("clickhouse", {}).get("compression", "lz4")

    @property
    def CLICKHOUSE_DEBUG(self) -> bool:
        """Verbose client logging from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("debug", True)

    @property
    def CLICKHOUSE_POOL_SIZE(self) -> int:
        """Connections per client from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("pool_size", 3)

    @property
    def CLICKHOUSE_DIAL_TIMEOUT(self) -> float:
        """Connect timeout per address (seconds) from databases.yaml"""
        return self._database_config.get("clickhouse", {}).get("dial_timeout", 5)

    # ============================================
    # CONFORMANCE RUNNER
    # ============================================
    CONFORMANCE_SCENARIO_TIMEOUT: float | None = Field(
        default=None, description="Per-scenario timeout override (seconds)"
    )

    @property
    def SCENARIO_TIMEOUT(self) -> float:
        """Per-scenario timeout: .env override, else databases.yaml"""
        if self.CONFORMANCE_SCENARIO_TIMEOUT is not None:
            return self.CONFORMANCE_SCENARIO_TIMEOUT
        return self._database_config.get("conformance", {}).get("scenario_timeout", 30)

    def client_config(self, addresses: list[str] | None = None, **overrides) -> ClientConfig:
        """
        Build a ClientConfig for the configured server

        Args:
            addresses: Address list (defaults to CLICKHOUSE_ADDRESSES)
            **overrides: Any ClientConfig field

        Example:
            >>> config = get_settings().client_config(
            ...     addresses=get_settings().CLICKHOUSE_FAILOVER_ADDRESSES
            ... )
        """
        fields = {
            "addresses": self.CLICKHOUSE_ADDRESSES if addresses is None else addresses,
            "auth": {
                "database": self.CLICKHOUSE_DB,
                "username": self.CLICKHOUSE_USER,
                "password": self.CLICKHOUSE_PASSWORD,
            },
            "compression": self.CLICKHOUSE_COMPRESSION,
            "debug": self.CLICKHOUSE_DEBUG,
            "max_open_conns": self.CLICKHOUSE_POOL_SIZE,
            "dial_timeout": self.CLICKHOUSE_DIAL_TIMEOUT,
        }
        fields.update(overrides)
        return build_config(**fields)


# Singleton pattern
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """
    Get application settings (singleton)

    Returns:
        Settings instance

    Example:
        >>> settings = get_settings()
        >>> print(settings.CLICKHOUSE_ADDRESSES)
        ['127.0.0.1:9000']
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
