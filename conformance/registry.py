"""
Scenario registry

Scenarios register themselves with @scenario(key, name). Each receives a
ScenarioEnv (how to open the client under test) and a Checker.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from config.settings import Settings
from conformance.assertions import Checker
from core.interfaces.database import BaseClickHouseClient, Opener
from core.models.client import ClientConfig


@dataclass(frozen=True)
class ScenarioEnv:
    """What a scenario needs to reach the server"""

    opener: Opener
    settings: Settings

    def config(self, addresses: list[str] | None = None, **overrides) -> ClientConfig:
        """Client configuration for the server contract (see config/providers/databases.yaml)"""
        return self.settings.client_config(addresses, **overrides)

    async def open(
        self, check: Checker, addresses: list[str] | None = None, **overrides
    ) -> BaseClickHouseClient | None:
        """Open the client under test; None (with a recorded failure) if it fails"""
        config = check.call("config", self.config, addresses, **overrides)
        if not config:
            return None
        outcome = await check.succeeds("open", self.opener(config.value))
        return outcome.value if outcome else None


ScenarioFn = Callable[[ScenarioEnv, Checker], Awaitable[None]]


@dataclass(frozen=True)
class RegisteredScenario:
    """A registered conformance scenario"""

    key: str
    name: str
    fn: ScenarioFn

    @property
    def full_name(self) -> str:
        """Return key.name format"""
        return f"{self.key}.{self.name}"


_SCENARIOS: list[RegisteredScenario] = []


def scenario(key: str, name: str) -> Callable[[ScenarioFn], ScenarioFn]:
    """Register a conformance scenario"""

    def decorator(fn: ScenarioFn) -> ScenarioFn:
        if any(s.key == key for s in _SCENARIOS):
            raise ValueError(f"Duplicate scenario key: {key}")
        _SCENARIOS.append(RegisteredScenario(key=key, name=name, fn=fn))
        return fn

    return decorator


def list_scenarios() -> list[RegisteredScenario]:
    """Registered scenarios in registration order"""
    return list(_SCENARIOS)


def get_scenario(key: str) -> RegisteredScenario:
    """
    Look up a scenario by key

    Raises:
        KeyError: If no scenario has this key
    """
    for registered in _SCENARIOS:
        if registered.key == key:
            return registered
    available = ", ".join(s.key for s in _SCENARIOS)
    raise KeyError(f"Scenario '{key}' not found. Available: {available}")
